def test_import_app(monkeypatch):
    # Minimal env for Settings() to load during import.
    monkeypatch.setenv("DATABASE_URL", "sqlite+pysqlite:///:memory:")
    monkeypatch.setenv("UPSTREAM_BASE_URL", "http://localhost:5173")
    monkeypatch.setenv("CONTROL_TOKEN", "change-me-control-token")

    import savepast.main  # noqa: F401
