from stocklot.services.stock_engine import AllocationStrategy, StockSettings, current_settings


def test_defaults_outside_app_context():
    settings = current_settings()
    assert settings.default_strategy is AllocationStrategy.FIFO_BY_RECEIPT
    assert settings.skip_expired_batches is False
    assert settings.expiring_soon_days == 30


def test_settings_follow_app_config(app):
    app.config.update(
        STOCK_ALLOCATION_STRATEGY='fifo_expiry',
        STOCK_SKIP_EXPIRED_BATCHES='true',
        STOCK_EXPIRING_SOON_DAYS='14',
        STOCK_BUSINESS_TIMEZONE='Europe/Paris',
    )
    with app.app_context():
        settings = current_settings()

    assert settings.default_strategy is AllocationStrategy.FIFO_BY_EXPIRY
    assert settings.skip_expired_batches is True
    assert settings.expiring_soon_days == 14
    assert settings.business_timezone == 'Europe/Paris'


def test_bad_values_fall_back():
    settings = StockSettings.from_config({
        'STOCK_ALLOCATION_STRATEGY': 'lifo',
        'STOCK_BUSINESS_TIMEZONE': 'Mars/Olympus_Mons',
    })
    assert settings.default_strategy is AllocationStrategy.FIFO_BY_RECEIPT
    assert settings.business_timezone == 'UTC'


def test_sqlite_engine_options_drop_pool_sizing(app):
    options = app.config['SQLALCHEMY_ENGINE_OPTIONS']
    assert 'pool_size' not in options
    assert options['connect_args']['check_same_thread'] is False
