"""Tests for rcc.config — YAML configuration loading."""

import textwrap

import pytest

from rcc.config import ConfigError, RccConfig, load_config


class TestRccConfigDefaults:
    """RccConfig should provide sensible defaults for every field."""

    def test_db_path_default(self) -> None:
        cfg = RccConfig()
        assert cfg.db_path.endswith(".rcc/rcc.db")

    def test_table_files_default_to_config_dir(self) -> None:
        cfg = RccConfig()
        assert cfg.netmask_file.endswith(".rcc/iplist.txt")
        assert cfg.tld_file.endswith(".rcc/tld_country_list.txt")

    def test_network_defaults(self) -> None:
        cfg = RccConfig()
        assert cfg.timeout == 5.0
        assert cfg.max_referral_hops == 5
        assert cfg.workers == 8

    def test_geo_defaults(self) -> None:
        cfg = RccConfig()
        assert cfg.geo_provider == "http"
        assert cfg.geo_url == "http://ipinfodb.com/ip_query.php"
        assert cfg.maxmind_city_db is None


class TestLoadConfigExplicitPath:
    """load_config(path=...) with an explicit file path."""

    def test_full_config(self, tmp_path: pytest.TempPathFactory) -> None:
        cfg_file = tmp_path / "config.yaml"
        cfg_file.write_text(
            textwrap.dedent("""\
                db_path: /data/rcc.db
                netmask_file: /data/iplist.txt
                tld_file: /data/tld.txt
                timeout: 2.5
                max_referral_hops: 3
                geo_provider: maxmind
                geo_url: http://geo.example.com/q
                maxmind_city_db: /data/GeoLite2-City.mmdb
                workers: 4
            """),
            encoding="utf-8",
        )

        cfg = load_config(cfg_file)

        assert cfg.db_path == "/data/rcc.db"
        assert cfg.netmask_file == "/data/iplist.txt"
        assert cfg.tld_file == "/data/tld.txt"
        assert cfg.timeout == 2.5
        assert cfg.max_referral_hops == 3
        assert cfg.geo_provider == "maxmind"
        assert cfg.geo_url == "http://geo.example.com/q"
        assert cfg.maxmind_city_db == "/data/GeoLite2-City.mmdb"
        assert cfg.workers == 4

    def test_partial_config_uses_defaults(
        self, tmp_path: pytest.TempPathFactory
    ) -> None:
        cfg_file = tmp_path / "config.yaml"
        cfg_file.write_text("db_path: /tmp/test.db\n", encoding="utf-8")

        cfg = load_config(cfg_file)

        assert cfg.db_path == "/tmp/test.db"
        # Remaining fields keep their defaults.
        assert cfg.timeout == 5.0
        assert cfg.geo_provider == "http"

    def test_empty_file_returns_defaults(
        self, tmp_path: pytest.TempPathFactory
    ) -> None:
        cfg_file = tmp_path / "config.yaml"
        cfg_file.write_text("", encoding="utf-8")

        cfg = load_config(cfg_file)

        assert cfg == RccConfig()

    def test_unknown_keys_are_ignored(self, tmp_path: pytest.TempPathFactory) -> None:
        cfg_file = tmp_path / "config.yaml"
        cfg_file.write_text(
            textwrap.dedent("""\
                db_path: /data/rcc.db
                some_future_key: true
            """),
            encoding="utf-8",
        )

        cfg = load_config(cfg_file)

        assert cfg.db_path == "/data/rcc.db"

    def test_integer_timeout_becomes_float(
        self, tmp_path: pytest.TempPathFactory
    ) -> None:
        cfg_file = tmp_path / "config.yaml"
        cfg_file.write_text("timeout: 3\n", encoding="utf-8")

        cfg = load_config(str(cfg_file))

        assert cfg.timeout == 3.0
        assert isinstance(cfg.timeout, float)


class TestLoadConfigMissingFile:
    """Behavior when the config file doesn't exist."""

    def test_explicit_path_not_found_raises(
        self, tmp_path: pytest.TempPathFactory
    ) -> None:
        missing = tmp_path / "nonexistent.yaml"

        with pytest.raises(FileNotFoundError, match="Config file not found"):
            load_config(missing)

    def test_default_path_missing_returns_defaults(
        self, tmp_path: pytest.TempPathFactory, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        monkeypatch.setattr(
            "rcc.config.DEFAULT_CONFIG_PATH", tmp_path / "nope" / "config.yaml"
        )

        assert load_config() == RccConfig()


class TestLoadConfigInvalid:
    """Malformed files raise ConfigError."""

    def test_invalid_yaml(self, tmp_path: pytest.TempPathFactory) -> None:
        cfg_file = tmp_path / "config.yaml"
        cfg_file.write_text("db_path: [unclosed\n", encoding="utf-8")

        with pytest.raises(ConfigError, match="Invalid YAML"):
            load_config(cfg_file)

    def test_top_level_list(self, tmp_path: pytest.TempPathFactory) -> None:
        cfg_file = tmp_path / "config.yaml"
        cfg_file.write_text("- a\n- b\n", encoding="utf-8")

        with pytest.raises(ConfigError, match="got list"):
            load_config(cfg_file)

    def test_non_numeric_timeout(self, tmp_path: pytest.TempPathFactory) -> None:
        cfg_file = tmp_path / "config.yaml"
        cfg_file.write_text("timeout: soon\n", encoding="utf-8")

        with pytest.raises(ConfigError, match="must be a number"):
            load_config(cfg_file)

    def test_zero_hops_rejected(self, tmp_path: pytest.TempPathFactory) -> None:
        cfg_file = tmp_path / "config.yaml"
        cfg_file.write_text("max_referral_hops: 0\n", encoding="utf-8")

        with pytest.raises(ConfigError, match="must be positive"):
            load_config(cfg_file)
