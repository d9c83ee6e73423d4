"""
Property-based checks of the schedule engine with Hypothesis.

- removing any installment leaves schedule numbers 1..N-1
- equal split always sums to exactly 100 %
- percentage edits and amount edits keep HT/TTC/percentage consistent
"""

import math

from hypothesis import given, settings
from hypothesis import strategies as st

from echeancier.services import schedule_service as engine

amounts = st.floats(min_value=0, max_value=1e9, allow_nan=False, allow_infinity=False)
positive_totals = st.floats(min_value=0.01, max_value=1e9, allow_nan=False, allow_infinity=False)
vat_rates = st.sampled_from([0.0, 2.1, 5.5, 10.0, 20.0])


def _close(a, b):
    return math.isclose(a, b, rel_tol=1e-6, abs_tol=1e-6)


@settings(max_examples=100)
@given(n=st.integers(min_value=1, max_value=30), data=st.data())
def test_remove_keeps_dense_numbering(n, data):
    schedule = engine.generate_equal_split(n, 1000, 20)
    victim = data.draw(st.sampled_from(schedule))
    out = engine.remove_installment(schedule, victim.id)
    assert [i.schedule_number for i in out] == list(range(1, n))
    assert victim.id not in {i.id for i in out}


@given(count=st.integers(min_value=1, max_value=250), total=amounts, vat=vat_rates)
def test_equal_split_sums_to_hundred(count, total, vat):
    out = engine.generate_equal_split(count, total, vat)
    assert len(out) == count
    assert sum(i.percentage for i in out) == 100


@given(total=amounts, pct=st.floats(min_value=0, max_value=100), vat=vat_rates)
def test_percentage_edit_round_trip(total, pct, vat):
    schedule = engine.generate_equal_split(2, total, vat)
    out = engine.update_installment(schedule, schedule[1].id, {"percentage": pct}, total)
    edited = out[1]
    assert _close(edited.amount_ht, total * pct / 100)
    assert _close(edited.amount_ttc, edited.amount_ht * (1 + edited.vat_rate / 100))
    assert out[0] == schedule[0]


@given(total=positive_totals, amount=amounts, vat=vat_rates)
def test_amount_edit_round_trip(total, amount, vat):
    schedule = engine.generate_equal_split(3, total, vat)
    out = engine.update_installment(schedule, schedule[0].id, {"amount_ht": amount}, total)
    edited = out[0]
    assert _close(edited.percentage, amount / total * 100)
    assert _close(edited.amount_ttc, amount * (1 + vat / 100))
    assert out[1:] == schedule[1:]
