from flow.config import DEFAULT_TIERS, FlowConfig, InstitutionalTier


def test_from_env(monkeypatch):
    monkeypatch.setenv("POLYGON_API_KEY", "env-key")
    monkeypatch.setenv("FLOW_SCAN_DEADLINE_SEC", "90")
    monkeypatch.setenv("FLOW_TICKER_BATCH_SIZE", "3")
    monkeypatch.setenv("FLOW_UNIVERSE", "spy, qqq ,,iwm")

    config = FlowConfig.from_env()

    assert config.POLYGON_API_KEY == "env-key"
    assert config.SCAN_DEADLINE_SEC == 90.0
    assert config.TICKER_BATCH_SIZE == 3
    assert config.UNIVERSE == ("SPY", "QQQ", "IWM")


def test_explicit_overrides_win(monkeypatch):
    monkeypatch.setenv("POLYGON_API_KEY", "env-key")
    monkeypatch.setenv("FLOW_TICKER_BATCH_SIZE", "3")

    config = FlowConfig.from_env(POLYGON_API_KEY="explicit", TICKER_BATCH_SIZE=8)

    assert config.POLYGON_API_KEY == "explicit"
    assert config.TICKER_BATCH_SIZE == 8


def test_tier_matching():
    bypass = InstitutionalTier("bypass", 0.01, 20, min_total=50_000)

    assert bypass.matches(0.50, 1000, 50_000)
    assert not bypass.matches(0.50, 999, 49_950)
    assert not bypass.matches(5.00, 10, 5_000)
    assert len(DEFAULT_TIERS) == 8
