import numpy as np
import pytest

from tax.federal import (
    calculate_capital_gains_tax,
    calculate_federal_ltcg_tax,
    calculate_federal_tax,
    calculate_progressive_income_tax,
    early_withdrawal_penalty,
    estimate_social_security_benefit,
    marginal_income_rate,
    stack_progressive,
    taxable_social_security,
)
from tax.state import (
    StateTaxConfig,
    _split_capital_gains,
    calculate_state_income_tax,
    calculate_state_tax_on_retirement,
)
from tax.tables import (
    contribution_limit,
    federal_brackets,
    normalize_filing_status,
    rmd_factor,
    rmd_start_age,
    roth_phaseout_multiplier,
    standard_deduction,
)


def test_first_bracket_2026_single():
    assert calculate_progressive_income_tax(10_000, "single", 2026) == pytest.approx(1_000.0)
    # 12,400 at 10% + 7,600 at 12%
    assert calculate_progressive_income_tax(20_000, "single", 2026) == pytest.approx(1_240.0 + 912.0)


def test_progressive_tax_is_monotone_and_bounded_by_top_rate():
    top = federal_brackets(2026, "single")[-1][1]
    incomes = np.linspace(0, 1_500_000, 301)
    taxes = [calculate_progressive_income_tax(x, "single", 2026) for x in incomes]
    assert all(b >= a for a, b in zip(taxes, taxes[1:]))
    for x in (0, 50_000, 250_000, 2_000_000):
        extra = calculate_progressive_income_tax(x + 1, "single", 2026) - calculate_progressive_income_tax(x, "single", 2026)
        assert extra <= top + 1e-9


def test_stacking_lands_in_the_next_bracket():
    brackets = ((10_000, 0.10), (float("inf"), 0.20))
    assert stack_progressive(5_000, brackets, already_stacked=8_000) == pytest.approx(2_000 * 0.10 + 3_000 * 0.20)


def test_later_years_inflate_bounds_not_rates():
    base = federal_brackets(2026, "single")
    later = federal_brackets(2028, "single", 0.03)
    assert [r for _, r in later] == [r for _, r in base]
    assert later[0][0] > base[0][0]


def test_ltcg_stacks_on_ordinary_income():
    # ordinary income fills the 0% band, so all gains land at 15%
    result = calculate_federal_ltcg_tax(10_000, ordinary_income=100_000, filing_status="single", age=40, year=2026)
    assert result.gains_at_0 == 0.0
    assert result.ltcg_tax == pytest.approx(1_500.0)


def test_ltcg_uses_leftover_deduction_and_zero_band():
    result = calculate_federal_ltcg_tax(40_000, ordinary_income=0, filing_status="single", age=40, year=2026)
    assert result.taxable_ltcg == pytest.approx(40_000 - 16_100)
    assert result.ltcg_tax == 0.0


def test_early_withdrawal_penalty_by_age():
    assert early_withdrawal_penalty(10_000, 55) == pytest.approx(1_000.0)
    assert early_withdrawal_penalty(10_000, 59.5) == 0.0
    assert early_withdrawal_penalty(0, 40) == 0.0


def test_federal_tax_breakdown_includes_penalty_separately():
    breakdown = calculate_federal_tax(ordinary_income=50_000, penalized_withdrawals=20_000, age=50, year=2026)
    assert breakdown.penalty == pytest.approx(2_000.0)
    assert breakdown.total == pytest.approx(breakdown.income_tax + 2_000.0)
    assert breakdown.ordinary_tax == pytest.approx(
        calculate_progressive_income_tax(50_000 - standard_deduction(2026, "single", 50), "single", 2026)
    )


def test_social_security_taxation_tiers():
    assert taxable_social_security(20_000, 10_000) == 0.0
    assert 0 < taxable_social_security(20_000, 20_000) <= 10_000
    assert taxable_social_security(40_000, 200_000) == pytest.approx(34_000.0)


def test_social_security_estimate_scales_with_claim_age():
    early = estimate_social_security_benefit(100_000, 62, 2026)
    full = estimate_social_security_benefit(100_000, 67, 2026)
    late = estimate_social_security_benefit(100_000, 70, 2026)
    assert early < full < late
    assert estimate_social_security_benefit(0, 67, 2026) == 0.0


def test_standard_deduction_adds_senior_amount():
    assert standard_deduction(2026, "single", 64) == 16_100
    assert standard_deduction(2026, "single", 65) == 16_100 + 2_050
    assert normalize_filing_status("married") == "married_filing_jointly"


def test_contribution_limits_with_catch_up():
    assert contribution_limit(2026, "traditional_401k", 40) == 24_000
    assert contribution_limit(2026, "traditional_401k", 55) == 24_000 + 7_500
    assert contribution_limit(2026, "traditional_401k", 61) == 24_000 + 11_250
    assert contribution_limit(2026, "hsa_single", 56) == 4_400 + 1_000


def test_roth_phaseout():
    assert roth_phaseout_multiplier(2026, "single", 100_000) == 1.0
    assert roth_phaseout_multiplier(2026, "single", 161_500) == pytest.approx(0.5)
    assert roth_phaseout_multiplier(2026, "single", 200_000) == 0.0


def test_rmd_schedule():
    assert rmd_start_age(1950) == 72
    assert rmd_start_age(1955) == 73
    assert rmd_start_age(1970) == 75
    assert rmd_factor(70) is None
    assert rmd_factor(75) > rmd_factor(90) > 0


def test_no_income_tax_state():
    assert calculate_state_income_tax(250_000, "single", "TX") == 0.0
    assert calculate_state_tax_on_retirement(state="TX", age=70, total_agi=100_000, tax_deferred_withdrawal=100_000) == 0.0


def test_state_tax_is_monotone_in_income():
    low = calculate_state_income_tax(50_000, "single", "CA")
    high = calculate_state_income_tax(150_000, "single", "CA")
    assert 0 < low < high


def test_marginal_income_rate_by_bracket():
    assert marginal_income_rate(0, "single", 2026) == pytest.approx(0.10)
    assert marginal_income_rate(12_400, "single", 2026) == pytest.approx(0.12)
    assert marginal_income_rate(60_000, "single", 2026) == pytest.approx(0.22)
    assert marginal_income_rate(10_000_000, "single", 2026) == pytest.approx(0.37)


def test_single_gain_stacks_on_taxable_income():
    # 4,650 fills the 0% band, the rest at 15%
    assert calculate_capital_gains_tax(10_000, True, 45_000, "single", 2026) == pytest.approx(5_350 * 0.15)
    # short-term: 5,400 at 12% then 4,600 at 22%
    assert calculate_capital_gains_tax(10_000, False, 45_000, "single", 2026) == pytest.approx(648.0 + 1_012.0)
    assert calculate_capital_gains_tax(-500, True, 45_000) == 0.0


# ---------------------------------------------------------------------------
# State capital-gains treatments
# ---------------------------------------------------------------------------

def test_ordinary_gains_taxed_like_wages():
    # Indiana: flat 3%, no deduction
    assert calculate_state_income_tax(50_000, "single", "IN", long_term_gains=10_000) == pytest.approx(1_800.0)
    assert calculate_state_tax_on_retirement(state="IN", age=70, long_term_gains=10_000) == pytest.approx(300.0)


def test_exempt_gains_are_untaxed():
    config = StateTaxConfig("Exempt", 5.0, cg_treatment="exempt")
    split = _split_capital_gains(config, 100_000)
    assert (split.ordinary_portion, split.special_tax, split.credit) == (0.0, 0.0, 0.0)
    assert calculate_state_income_tax(0, "single", "TX", long_term_gains=1_000_000) == 0.0
    assert calculate_state_tax_on_retirement(state="TX", age=70, long_term_gains=1_000_000) == 0.0


def test_percentage_deduction():
    # Arizona: 2.5% flat, 25% of gains deducted
    assert calculate_state_income_tax(40_000, "single", "AZ", long_term_gains=100_000) == pytest.approx(
        (40_000 + 75_000) * 0.025
    )
    assert calculate_state_tax_on_retirement(state="AZ", age=70, long_term_gains=100_000) == pytest.approx(
        75_000 * 0.025
    )


def test_exclusion_is_capped():
    # New Mexico: 5.9% flat, 40% of gains excluded up to 2,500
    assert calculate_state_income_tax(50_000, "single", "NM", long_term_gains=10_000) == pytest.approx(
        57_500 * 0.059
    )
    # under the cap the full 40% is excluded
    assert calculate_state_income_tax(50_000, "single", "NM", long_term_gains=5_000) == pytest.approx(
        53_000 * 0.059
    )
    assert calculate_state_tax_on_retirement(state="NM", age=70, long_term_gains=10_000) == pytest.approx(
        7_500 * 0.059
    )


def test_flat_special_rate_above_exemption():
    # Washington: 7% on gains above 270,000, no income tax
    assert calculate_state_income_tax(500_000, "single", "WA", long_term_gains=200_000) == 0.0
    assert calculate_state_income_tax(500_000, "single", "WA", long_term_gains=300_000) == pytest.approx(2_100.0)
    assert calculate_state_tax_on_retirement(state="WA", age=70, long_term_gains=300_000) == pytest.approx(2_100.0)
    # Hawaii: wages at 11%, gains separately at 7.25%
    assert calculate_state_income_tax(50_000, "single", "HI", long_term_gains=10_000) == pytest.approx(
        5_500.0 + 725.0
    )


def test_credit_reduces_tax_but_not_below_zero():
    # Montana: 15,000 deduction, 4.7% to 21,100 then 5.9%, 2% credit on gains
    wages = 21_100 * 0.047 + 13_900 * 0.059
    assert calculate_state_income_tax(40_000, "single", "MT", long_term_gains=10_000) == pytest.approx(
        wages - 200.0
    )
    retirement = 21_100 * 0.047 + 3_900 * 0.059
    assert calculate_state_tax_on_retirement(state="MT", age=70, long_term_gains=40_000) == pytest.approx(
        retirement - 800.0
    )
    assert calculate_state_tax_on_retirement(state="MT", age=70, long_term_gains=20_000) == 0.0
