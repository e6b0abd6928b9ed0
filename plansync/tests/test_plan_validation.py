import pytest

from plansync.core.errors import InvalidArgumentError
from plansync.features.plans.validation import validate_plan, validate_user_id
from plansync.models.plan import PlanTier


@pytest.mark.parametrize("user_id", ["u1", "user_2abcDEF", "team:42", "ada@example.com", "a.b-c_d", "x" * 100])
def test_accepts_known_user_id_shapes(user_id):
    assert validate_user_id(user_id) == user_id


@pytest.mark.parametrize("user_id", ["", "x" * 101, "u 1", "u1;", "u1'--", "ü1", 42])
def test_rejects_malformed_user_ids(user_id):
    with pytest.raises(InvalidArgumentError):
        validate_user_id(user_id)


def test_plan_enum_is_closed():
    assert PlanTier.values() == ["free", "member", "pro", "elite"]
    assert validate_plan("ELITE") is PlanTier.ELITE
    assert validate_plan(PlanTier.PRO) is PlanTier.PRO
    with pytest.raises(InvalidArgumentError) as exc_info:
        validate_plan("gold")
    assert exc_info.value.code == "invalid_argument"
    assert exc_info.value.status_code == 400
