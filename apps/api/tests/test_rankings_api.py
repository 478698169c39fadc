"""
Rankings, analytics and health API tests

Run with: pytest tests/test_rankings_api.py -v
"""


def _post_run(client, headers, distance_km):
    response = client.post(
        "/v1/activities",
        json={"distance_km": distance_km, "duration_s": 900, "pace_min_per_km": 5.5},
        headers=headers,
    )
    assert response.status_code == 201


class TestRankingsApi:
    def test_requires_auth(self, client):
        assert client.get("/v1/rankings/global").status_code == 401

    def test_my_rank(self, client, athlete, make_athlete, auth_headers):
        rival = make_athlete(athlete_name="Rival")
        _post_run(client, auth_headers(rival), 6.0)
        _post_run(client, auth_headers(athlete), 2.3)
        _post_run(client, auth_headers(athlete), 4.7)

        response = client.get("/v1/rankings/me", headers=auth_headers(athlete))

        assert response.status_code == 200
        assert response.json() == {
            "rank": 1,
            "total_points": 7.0,
            "school_club": "International School of Prague",
        }

    def test_global(self, client, athlete, make_athlete, auth_headers):
        make_athlete(athlete_name="Bea")
        make_athlete(athlete_name="Cal")
        _post_run(client, auth_headers(athlete), 1.0)

        response = client.get("/v1/rankings/global?limit=2", headers=auth_headers(athlete))

        assert response.status_code == 200
        data = response.json()
        assert len(data) == 2
        assert data[0]["athlete_id"] == athlete.id
        assert data[0]["activity_count"] == 1
        assert data[1]["athlete_name"] == "Bea"

    def test_schools(self, client, athlete, auth_headers):
        _post_run(client, auth_headers(athlete), 3.0)

        data = client.get("/v1/rankings/schools", headers=auth_headers(athlete)).json()

        assert data[0]["school_club"] == "International School of Prague"
        assert data[0]["total_points"] == 3.0
        assert all(s["total_points"] == 0.0 for s in data[1:])

    def test_all_age_groups(self, client, athlete, auth_headers):
        data = client.get("/v1/rankings/age-groups", headers=auth_headers(athlete)).json()

        assert set(data["age_groups"]) == {"elementary", "middle", "high"}
        assert data["age_groups"]["middle"]["total_participants"] == 1
        assert data["age_groups"]["high"]["needs_more_participants"] == 5

    def test_single_age_group(self, client, athlete, auth_headers):
        response = client.get("/v1/rankings/age-groups/middle", headers=auth_headers(athlete))

        assert response.status_code == 200
        assert response.json()["label"] == "Middle School (Ages 9-12)"
        assert response.json()["rankings"][0]["athlete_id"] == athlete.id

    def test_unknown_age_group(self, client, athlete, auth_headers):
        response = client.get("/v1/rankings/age-groups/college", headers=auth_headers(athlete))

        assert response.status_code == 422
        assert response.json()["error_code"] == "VALIDATION_ERROR_BRACKET"


class TestAnalyticsApi:
    def test_defaults_on_first_access(self, client, athlete, auth_headers):
        response = client.get("/v1/analytics/me", headers=auth_headers(athlete))

        assert response.status_code == 200
        body = response.json()
        assert body["athlete_id"] == athlete.id
        assert body["avg_completion_rate"] == 80.0
        assert body["recent_trend"] == "stable"
        assert body["total_challenges_completed"] == 0

    def test_reflects_completions(self, client, athlete, auth_headers, distance_ladder):
        _post_run(client, auth_headers(athlete), 1.2)

        body = client.get("/v1/analytics/me", headers=auth_headers(athlete)).json()

        assert body["avg_completion_rate"] == 82.0
        assert body["total_challenges_completed"] == 1


class TestHealth:
    def test_health(self, client):
        response = client.get("/health")

        assert response.status_code == 200
        assert response.json()["status"] == "healthy"
        assert response.json()["database"] == "ok"
        assert "X-Content-Type-Options" in response.headers


class TestSchoolRegistry:
    def test_public_sorted_registry(self, client):
        response = client.get("/v1/rankings/schools/registry")

        assert response.status_code == 200
        names = response.json()
        assert names == sorted(names)
        assert "International School of Prague" in names
        assert len(names) == len(set(names))
