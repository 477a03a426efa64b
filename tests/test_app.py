class TestApplication:

    def test_health_check(self, client):
        response = client.get("/health")
        assert response.status_code == 200
        assert response.json()["status"] == "healthy"

    def test_api_info_lists_route_groups(self, client):
        response = client.get("/api/v1/info")
        assert response.status_code == 200
        assert set(response.json()["endpoints"]) == {"authentication", "doctors", "staff", "admin"}

    def test_domain_errors_keep_their_code(self, client):
        response = client.get("/api/v1/doctors/424242")
        assert response.status_code == 404
        assert response.json() == {
            "detail": {"code": "not_found", "message": "Doctor not found"}
        }
