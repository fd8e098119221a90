"""
test_registry.py - Unit tests for the rate registry

Tests:
- Adding, removing and re-adding collateral kinds
- Role enforcement
- Input validation (token, rate, decimals)
- Swap-with-last enumeration order
- Conversion in both directions, including the base-kind identity
"""

import pytest
from multicollateral import (
    RateRegistry, RoleRegistry, EventLog, EventType, PROTOCOL_ADMIN, RATE_SCALE,
    calculate_to_base, calculate_from_base, round_trip_error_bound,
    CollateralNotAllowed, InvalidCollateral, InvalidDecimals, InvalidRate,
    InvalidAmount, NotProtocolAdmin,
)


@pytest.fixture
def registry():
    roles = RoleRegistry({PROTOCOL_ADMIN: ["admin"]})
    reg = RateRegistry("SOVABTC", 8, roles, EventLog())
    reg.add_collateral("admin", "SOVABTC", RATE_SCALE, 8)
    return reg


class TestAddCollateral:

    def test_add_records_kind(self, registry):
        kind = registry.add_collateral("admin", "WBTC", RATE_SCALE, 8)
        assert kind.allowed
        assert registry.is_allowed("WBTC")
        assert registry.rate_of("WBTC") == RATE_SCALE
        assert registry.decimals_of("WBTC") == 8
        assert registry.allowed_collateral() == ["SOVABTC", "WBTC"]
        assert registry.collateral_count() == 2

    def test_add_emits_event(self, registry):
        registry.add_collateral("admin", "WBTC", RATE_SCALE, 8)
        added = registry.events.of_type(EventType.COLLATERAL_ADDED)
        assert added[-1].payload == {"token": "WBTC", "rate": RATE_SCALE, "decimals": 8}

    def test_non_admin_rejected(self, registry):
        with pytest.raises(NotProtocolAdmin):
            registry.add_collateral("mallory", "WBTC", RATE_SCALE, 8)
        assert not registry.is_allowed("WBTC")

    def test_duplicate_rejected(self, registry):
        registry.add_collateral("admin", "WBTC", RATE_SCALE, 8)
        with pytest.raises(InvalidCollateral):
            registry.add_collateral("admin", "WBTC", RATE_SCALE, 8)

    @pytest.mark.parametrize("token", ["", "   ", None])
    def test_empty_token_rejected(self, registry, token):
        with pytest.raises(InvalidCollateral):
            registry.add_collateral("admin", token, RATE_SCALE, 8)

    def test_zero_rate_rejected(self, registry):
        with pytest.raises(InvalidRate):
            registry.add_collateral("admin", "WBTC", 0, 8)

    @pytest.mark.parametrize("decimals", [-1, 256, 1000])
    def test_decimals_out_of_range(self, registry, decimals):
        with pytest.raises(InvalidDecimals):
            registry.add_collateral("admin", "WBTC", RATE_SCALE, decimals)

    def test_decimals_bounds_accepted(self, registry):
        registry.add_collateral("admin", "ZERO", RATE_SCALE, 0)
        registry.add_collateral("admin", "MAX", RATE_SCALE, 255)
        assert registry.decimals_of("ZERO") == 0
        assert registry.decimals_of("MAX") == 255


class TestRemoveCollateral:

    def test_swap_with_last_order(self, registry):
        for token in ("A", "B", "C", "D"):
            registry.add_collateral("admin", token, RATE_SCALE, 8)
        registry.remove_collateral("admin", "A")
        assert registry.allowed_collateral() == ["SOVABTC", "D", "B", "C"]
        registry.remove_collateral("admin", "C")
        assert registry.allowed_collateral() == ["SOVABTC", "D", "B"]

    def test_removed_kind_is_cleared(self, registry):
        registry.add_collateral("admin", "WBTC", RATE_SCALE, 8)
        registry.remove_collateral("admin", "WBTC")
        kind = registry.get_collateral("WBTC")
        assert kind.allowed is False
        assert kind.rate_to_base == 0
        assert kind.decimals == 0
        assert not registry.is_allowed("WBTC")
        with pytest.raises(CollateralNotAllowed):
            registry.rate_of("WBTC")

    def test_remove_unknown(self, registry):
        with pytest.raises(CollateralNotAllowed):
            registry.remove_collateral("admin", "DOGE")

    def test_remove_twice(self, registry):
        registry.add_collateral("admin", "WBTC", RATE_SCALE, 8)
        registry.remove_collateral("admin", "WBTC")
        with pytest.raises(CollateralNotAllowed):
            registry.remove_collateral("admin", "WBTC")

    def test_remove_requires_admin(self, registry):
        with pytest.raises(NotProtocolAdmin):
            registry.remove_collateral("mallory", "SOVABTC")

    def test_re_add_after_remove(self, registry):
        registry.add_collateral("admin", "WBTC", RATE_SCALE, 8)
        registry.remove_collateral("admin", "WBTC")
        registry.add_collateral("admin", "WBTC", RATE_SCALE // 2, 18)
        assert registry.rate_of("WBTC") == RATE_SCALE // 2
        assert registry.decimals_of("WBTC") == 18
        assert registry.allowed_collateral() == ["SOVABTC", "WBTC"]


class TestUpdateRate:

    def test_update_returns_old_and_new(self, registry):
        registry.add_collateral("admin", "WBTC", RATE_SCALE, 8)
        assert registry.update_rate("admin", "WBTC", 95 * RATE_SCALE // 100) == (
            RATE_SCALE, 95 * RATE_SCALE // 100
        )
        event = registry.events.of_type(EventType.RATE_UPDATED)[-1]
        assert event.payload["old_rate"] == RATE_SCALE

    def test_update_unknown(self, registry):
        with pytest.raises(CollateralNotAllowed):
            registry.update_rate("admin", "DOGE", RATE_SCALE)

    def test_update_zero_rate(self, registry):
        registry.add_collateral("admin", "WBTC", RATE_SCALE, 8)
        with pytest.raises(InvalidRate):
            registry.update_rate("admin", "WBTC", 0)
        assert registry.rate_of("WBTC") == RATE_SCALE

    def test_update_requires_admin(self, registry):
        with pytest.raises(NotProtocolAdmin):
            registry.update_rate("mallory", "SOVABTC", RATE_SCALE)


class TestConversion:

    def test_same_decimals_par(self, registry):
        registry.add_collateral("admin", "WBTC", RATE_SCALE, 8)
        assert registry.convert_to_base("WBTC", 10 ** 8) == 10 ** 8
        assert registry.convert_from_base("WBTC", 10 ** 8) == 10 ** 8

    def test_eighteen_decimals_par(self, registry):
        registry.add_collateral("admin", "TBTC", RATE_SCALE, 18)
        assert registry.convert_to_base("TBTC", 10 ** 18) == 10 ** 8
        assert registry.convert_from_base("TBTC", 10 ** 8) == 10 ** 18

    def test_depegged_rate(self, registry):
        registry.add_collateral("admin", "TBTC", 95 * RATE_SCALE // 100, 18)
        assert registry.convert_to_base("TBTC", 10 ** 18) == 95_000_000

    def test_rounds_down(self, registry):
        registry.add_collateral("admin", "TBTC", RATE_SCALE, 18)
        assert registry.convert_to_base("TBTC", 10 ** 10 - 1) == 0
        assert registry.convert_to_base("TBTC", 10 ** 10) == 1

    def test_zero_amount(self, registry):
        registry.add_collateral("admin", "WBTC", RATE_SCALE, 8)
        assert registry.convert_to_base("WBTC", 0) == 0

    def test_base_is_identity(self, registry):
        registry.update_rate("admin", "SOVABTC", 2 * RATE_SCALE)
        assert registry.convert_to_base("SOVABTC", 12345) == 12345
        assert registry.convert_from_base("SOVABTC", 12345) == 12345

    def test_not_allowed(self, registry):
        with pytest.raises(CollateralNotAllowed):
            registry.convert_to_base("DOGE", 1)
        with pytest.raises(CollateralNotAllowed):
            registry.convert_from_base("DOGE", 1)

    def test_negative_amount(self, registry):
        with pytest.raises(InvalidAmount):
            registry.convert_to_base("SOVABTC", -1)


class TestPureFunctions:

    def test_negative_exponent_multiplies(self):
        # 0-decimal token into a 20-decimal base unit
        assert calculate_to_base(5, RATE_SCALE, 0, 20) == 5 * 10 ** 20
        assert calculate_from_base(5 * 10 ** 20, RATE_SCALE, 0, 20) == 5

    def test_error_bound_zero_when_exact(self):
        assert round_trip_error_bound(RATE_SCALE, 8, 8) == 0

    def test_error_bound_for_finer_collateral(self):
        # scale 1e28, rate 1e18: each base unit is worth 1e10 collateral units
        assert round_trip_error_bound(RATE_SCALE, 18, 8) == 10 ** 10

    def test_error_bound_rounds_up(self):
        assert round_trip_error_bound(3 * RATE_SCALE, 8, 8) == 1
