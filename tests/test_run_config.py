"""
Tests for CrawlerRunConfig: defaults, env overrides and CLI mapping.
"""

import argparse

import pytest

from retail_crawler.run_config import ENV_RPM, ENV_USER_AGENT, CrawlerRunConfig


def namespace(**kwargs):
    base = dict(
        max_products=None, rpm=None, workers=None, timeout=None, link_delay=None,
        static=False, headed=False, ignore_robots=False,
        output_json=None, output_jsonl=None, output_csv=None,
    )
    base.update(kwargs)
    return argparse.Namespace(**base)


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    monkeypatch.delenv(ENV_RPM, raising=False)
    monkeypatch.delenv(ENV_USER_AGENT, raising=False)


class TestCrawlerRunConfig:

    def test_defaults(self):
        cfg = CrawlerRunConfig.from_cli_args(namespace())
        assert cfg.max_products_per_category == 20
        assert cfg.requests_per_minute == 10.0
        assert cfg.max_workers == 4
        assert cfg.link_delay == 2.0
        assert cfg.use_browser is True
        assert cfg.respect_robots is True

    def test_cli_flags_override(self):
        cfg = CrawlerRunConfig.from_cli_args(namespace(
            max_products=5, rpm=30.0, workers=2, timeout=10, link_delay=0.5,
            static=True, ignore_robots=True, output_jsonl="out.jsonl",
        ))
        assert cfg.max_products_per_category == 5
        assert cfg.requests_per_minute == 30.0
        assert cfg.max_workers == 2
        assert cfg.timeout_seconds == 10
        assert cfg.link_delay == 0.5
        assert cfg.use_browser is False
        assert cfg.respect_robots is False
        assert cfg.output_jsonl == "out.jsonl"

    def test_env_overrides_defaults(self, monkeypatch):
        monkeypatch.setenv(ENV_RPM, "4")
        monkeypatch.setenv(ENV_USER_AGENT, "TestAgent/1.0")
        cfg = CrawlerRunConfig.from_cli_args(namespace())
        assert cfg.requests_per_minute == 4.0
        assert cfg.user_agent == "TestAgent/1.0"

    def test_cli_beats_env(self, monkeypatch):
        monkeypatch.setenv(ENV_RPM, "4")
        assert CrawlerRunConfig.from_cli_args(namespace(rpm=12.0)).requests_per_minute == 12.0

    def test_bad_env_value_ignored(self, monkeypatch):
        monkeypatch.setenv(ENV_RPM, "fast")
        assert CrawlerRunConfig.from_env().requests_per_minute == 10.0

    @pytest.mark.parametrize("flags", [
        {"max_products": -1},
        {"workers": 0},
        {"timeout": 0},
        {"rpm": -5.0},
    ])
    def test_out_of_range_cli_values_rejected(self, flags):
        with pytest.raises(ValueError):
            CrawlerRunConfig.from_cli_args(namespace(**flags))

    def test_to_crawl_options(self):
        cfg = CrawlerRunConfig(max_products_per_category=7, requests_per_minute=20,
                               timeout_seconds=15, respect_robots=False)
        opts = cfg.to_crawl_options()
        assert opts.max_products_per_category == 7
        assert opts.requests_per_minute_per_domain == 20
        assert opts.fetch_timeout == 15.0
        assert opts.respect_robots is False
        assert opts.viewport == (1280, 800)
        assert opts.robots_agent_names == ("googlebot",)
