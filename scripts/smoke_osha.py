from datetime import date

from safety_tracker.app import create_app


def main():
    app = create_app()
    client = app.test_client()

    # 1) Seed demo establishment, incidents and annual stats
    seeded = client.get("/seed").get_json()
    est_id = seeded["establishment_id"]
    year = date.today().year
    print(f"Establishment id={est_id}, created={seeded['created']}")

    # 2) OSHA 300 log
    log = client.get(f"/api/establishments/{est_id}/osha/300?year={year}").get_json()
    print(f"OSHA 300 rows for {year}: {len(log)}")
    for row in log[:5]:
        print({
            "case": row["case_number"],
            "employee": row["employee_name"],
            "date": row["incident_date"],
            "death": row["outcome_death"],
            "days_away": row["days_away_count"],
        })

    # 3) OSHA 300A summary and dashboard
    summary = client.get(f"/api/establishments/{est_id}/osha/300a?year={year}").get_json()
    print(
        f"300A: deaths={summary['total_deaths']}, days_away_cases={summary['total_days_away_cases']}, "
        f"hours={summary['total_hours_worked']}"
    )
    dash = client.get(f"/api/establishments/{est_id}/dashboard?year={year}").get_json()
    print(f"Dashboard summary: {dash['summary']}")


if __name__ == "__main__":
    main()
