import json
from decimal import Decimal

import pytest

from src.services.opensea.config_loader import load_app_config
from src.services.opensea.models import ConfigError


ENV_KEYS = (
    "OPENSEA_API_KEY",
    "WALLET_PRIVATE_KEY",
    "CHAIN",
    "RPC_URL",
    "COLLECTION_SLUG",
    "COLLECTION_CONTRACT",
    "TELEGRAM_BOT_TOKEN",
    "TELEGRAM_CHAT_IDS",
    "TELEGRAM_ENABLED",
)


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    for key in ENV_KEYS:
        monkeypatch.delenv(key, raising=False)
    monkeypatch.setenv("OPENSEA_API_KEY", "api-key")
    monkeypatch.setenv("WALLET_PRIVATE_KEY", "0x" + "22" * 32)


def _write(tmp_path, payload):
    path = tmp_path / "opensea.json"
    path.write_text(json.dumps(payload), encoding="utf-8")
    return str(path)


def test_defaults_apply_with_minimal_file(tmp_path):
    cfg = load_app_config(config_file=_write(tmp_path, {"collection": {"slug": "apes"}}))
    assert cfg.collection_slug == "apes"
    assert cfg.runtime.dry_run is True
    assert cfg.runtime.poll_interval == 30.0
    assert cfg.policy.max_offer_fraction_of_floor == Decimal("0.985")
    assert cfg.volume.inventory_cap == 4
    assert cfg.toggles.harvest is False
    assert cfg.toggles.volume is True
    assert cfg.chain.chain_id == 1
    assert cfg.api_key == "api-key"


def test_missing_secret_is_config_error(tmp_path, monkeypatch):
    monkeypatch.delenv("WALLET_PRIVATE_KEY")
    with pytest.raises(ConfigError, match="WALLET_PRIVATE_KEY"):
        load_app_config(config_file=_write(tmp_path, {"collection": {"slug": "apes"}}))


def test_missing_slug_is_config_error(tmp_path):
    with pytest.raises(ConfigError):
        load_app_config(config_file=str(tmp_path / "absent.json"))


def test_env_slug_and_chain_override(tmp_path, monkeypatch):
    monkeypatch.setenv("COLLECTION_SLUG", "punks")
    monkeypatch.setenv("CHAIN", "matic")
    monkeypatch.setenv("RPC_URL", "http://localhost:8545")
    cfg = load_app_config(config_file=_write(tmp_path, {"collection": {"slug": "apes"}}))
    assert cfg.collection_slug == "punks"
    assert cfg.chain.name == "polygon"
    assert cfg.chain.api_chain == "matic"
    assert cfg.chain.rpc_url == "http://localhost:8545"


def test_unknown_chain(tmp_path):
    payload = {"collection": {"slug": "apes"}, "chain": {"name": "dogechain"}}
    with pytest.raises(ConfigError, match="Unknown chain"):
        load_app_config(config_file=_write(tmp_path, payload))


def test_bad_decimal(tmp_path):
    payload = {"collection": {"slug": "apes"}, "strategy": {"bid_increment": "lots"}}
    with pytest.raises(ConfigError, match="strategy.bid_increment"):
        load_app_config(config_file=_write(tmp_path, payload))


def test_sections_and_live_flag(tmp_path):
    payload = {
        "collection": {"slug": "apes", "contract_address": "0xabc"},
        "strategy": {"use_second_best_strategy": True, "undercut_amount": "0.01"},
        "toggles": {"harvest": "on", "sniper": False},
        "volume": {"prune_sold_positions": True, "inventory_cap": 2},
        "harvest": {"reserved_token_ids": [1, "2"]},
        "api": {"routes": {"collection": "/custom/{slug}", "bogus": "/x"}},
        "telegram": {"enabled": True, "token": "t", "chat_ids": [5, "6", "x"]},
    }
    cfg = load_app_config(config_file=_write(tmp_path, payload), live_mode=True)
    assert cfg.runtime.dry_run is False
    assert cfg.contract_address == "0xabc"
    assert cfg.policy.use_second_best_strategy is True
    assert cfg.policy.undercut_amount == Decimal("0.01")
    assert cfg.toggles.harvest is True
    assert cfg.toggles.sniper is False
    assert cfg.volume.prune_sold_positions is True
    assert cfg.volume.inventory_cap == 2
    assert cfg.harvest.reserved_token_ids == ("1", "2")
    assert cfg.routes.collection == "/custom/{slug}"
    assert cfg.telegram.enabled is True
    assert cfg.telegram.chat_ids == (5, 6)
