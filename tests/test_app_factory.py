import importlib

from flask import Flask

from pdf_tools import bootstrap
from pdf_tools.factory import create_app


def test_create_app_registers_expected_routes(monkeypatch):
    monkeypatch.setattr("pdf_tools.factory.bootstrap.bootstrap_runtime", lambda: None)
    app = create_app()

    rules = {rule.rule for rule in app.url_map.iter_rules()}
    expected = {
        "/api/merge",
        "/api/npages",
        "/healthz",
        "/health",
    }
    assert expected.issubset(rules)


def test_create_app_limits_request_body(monkeypatch):
    monkeypatch.setattr("pdf_tools.factory.bootstrap.bootstrap_runtime", lambda: None)
    app = create_app()

    # 10 documents of 30 MB plus 5 MB of multipart overhead.
    assert app.config["MAX_CONTENT_LENGTH"] == 305 * 1024 * 1024


def test_bootstrap_runtime_is_idempotent(monkeypatch, isolated_settings):
    calls = {"log_config": 0, "sweep": 0}

    def _log_config(*args, **kwargs):
        del args, kwargs
        calls["log_config"] += 1

    real_manager = bootstrap.merge_service.get_work_area_manager

    def _manager(settings=None):
        manager = real_manager(settings)
        real_sweep = manager.sweep_stale

        def _sweep(*args, **kwargs):
            calls["sweep"] += 1
            return real_sweep(*args, **kwargs)

        manager.sweep_stale = _sweep
        return manager

    monkeypatch.setattr(bootstrap, "_bootstrap_started", False)
    monkeypatch.setattr(bootstrap.merge_service, "log_effective_config", _log_config)
    monkeypatch.setattr(bootstrap.merge_service, "get_work_area_manager", _manager)

    bootstrap.bootstrap_runtime()
    bootstrap.bootstrap_runtime()

    assert calls == {"log_config": 1, "sweep": 1}
    assert bootstrap.is_bootstrapped()
    assert isolated_settings.is_dir()


def test_root_app_shim_exposes_gunicorn_app():
    app_module = importlib.import_module("app")
    assert hasattr(app_module, "app")
    assert isinstance(app_module.app, Flask)
