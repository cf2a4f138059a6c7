from datetime import date, datetime

from buildstate.services import analytics


def test_growth_rate():
    assert analytics.growth_rate(15, 10) == 50.0
    assert analytics.growth_rate(5, 10) == -50.0
    assert analytics.growth_rate(3, 0) == 0.0
    assert analytics.growth_rate(0, 0) == 0.0


def test_conversion_rate():
    assert analytics.conversion_rate(trial=3, converted=1) == 25.0
    assert analytics.conversion_rate(0, 0) == 0
    assert analytics.conversion_rate(trial=0, converted=5) == 0


def test_mrr_only_counts_active_paid_plans():
    report = analytics.mrr_breakdown([
        ("BASIC", "ACTIVE"),
        ("BASIC", "ACTIVE"),
        ("ENTERPRISE", "ACTIVE"),
        ("PROFESSIONAL", "SUSPENDED"),
        ("FREE_TRIAL", "ACTIVE"),
    ])
    assert report["mrr"] == 29 * 2 + 149
    assert report["arr"] == report["mrr"] * 12
    assert report["paying_customers"] == 3
    assert report["by_plan"]["PROFESSIONAL"] == {"subscribers": 0, "mrr": 0}


def test_churn_report():
    start, end = datetime(2026, 3, 1), datetime(2026, 4, 1)
    rows = [
        (1, "BASIC", datetime(2026, 1, 5), None),                          # retained
        (2, "PROFESSIONAL", datetime(2026, 1, 9), datetime(2026, 3, 10)),  # churned in window
        (3, "BASIC", datetime(2026, 3, 2), None),                          # new
        (4, "BASIC", datetime(2025, 11, 1), datetime(2026, 1, 1)),         # gone before window
        (4, "ENTERPRISE", datetime(2026, 3, 20), None),                    # reactivation
    ]
    report = analytics.churn_report(rows, start, end, suspended=2)
    assert report["active_at_start"] == 2
    assert report["churned"] == 1
    assert report["churn_rate"] == 50.0
    assert report["churned_mrr"] == 79
    assert report["new_subscriptions"] == 1
    assert report["reactivations"] == 1
    assert report["new_mrr"] == 29 + 149
    assert report["net_mrr_change"] == 29 + 149 - 79
    assert report["suspended"] == 2


def test_daily_series_zero_fills():
    series = analytics.daily_series(
        [datetime(2026, 5, 1, 9), datetime(2026, 5, 1, 17), datetime(2026, 5, 3, 8)], date(2026, 5, 1), 4
    )
    assert [d["count"] for d in series] == [2, 0, 1, 0]
    assert series[0]["date"] == "2026-05-01"


def test_daily_series_by_label():
    series = analytics.daily_series_by(
        [(datetime(2026, 5, 1), "TENANT"), (datetime(2026, 5, 1), "OWNER"), (datetime(2026, 5, 2), "TENANT")],
        date(2026, 5, 1), 2,
    )
    assert series[0] == {"date": "2026-05-01", "total": 2, "TENANT": 1, "OWNER": 1}
    assert series[1] == {"date": "2026-05-02", "total": 1, "TENANT": 1}


def test_signup_funnel_is_monotonic():
    funnel = analytics.signup_funnel(
        signups=[1, 2, 3, 4],
        with_property=[1, 2, 3],
        with_unit=[1, 2, 9],
        with_work=[2, 3],
        paying=[2],
    )
    assert [s["users"] for s in funnel] == [4, 3, 2, 1, 1]
    assert funnel[0]["conversion_from_previous"] == 100.0
    assert funnel[2]["conversion_from_previous"] == 66.67
    assert funnel[-1]["conversion_from_start"] == 25.0


def test_retention_cohorts():
    now = datetime(2026, 3, 15)
    signups = [(1, datetime(2026, 1, 3)), (2, datetime(2026, 1, 20)), (3, datetime(2026, 3, 1)),
               (4, datetime(2025, 6, 1))]
    activity = [(1, datetime(2026, 1, 4)), (1, datetime(2026, 2, 10)), (2, datetime(2026, 3, 2)),
                (4, datetime(2026, 3, 1))]

    cohorts = analytics.retention_cohorts(signups, activity, now, months=3)
    assert [c["cohort"] for c in cohorts] == ["2026-01", "2026-02", "2026-03"]

    january = cohorts[0]
    assert january["users"] == 2
    assert [m["active"] for m in january["retention"]] == [1, 1, 1]
    assert january["retention"][1]["rate"] == 50.0

    assert cohorts[1]["users"] == 0
    assert cohorts[2]["retention"] == [{"month": 0, "active": 0, "rate": 0}]


def test_traffic_summary():
    summary = analytics.traffic_summary([
        ("/", "google.com", "s1"),
        ("/", None, "s2"),
        ("/pricing", "google.com", "s1"),
        ("/blog", "news.ycombinator.com", None),
    ], top=2)
    assert summary["total_visits"] == 4
    assert summary["unique_sessions"] == 2
    assert summary["top_pages"][0] == {"path": "/", "views": 2}
    assert len(summary["top_pages"]) == 2
    assert summary["top_referrers"][0] == {"referrer": "google.com", "visits": 2}
