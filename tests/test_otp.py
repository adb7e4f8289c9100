import pytest

from auth.security import decode_token
from conftest import make_child, make_paper, make_user
from services.errors import InvalidOtp, NotFound
from services.otp import OTP_MAX, OTP_MIN, OtpGate, generate_otp


def test_codes_are_five_digits():
    for _ in range(200):
        assert OTP_MIN <= generate_otp() <= OTP_MAX


def test_code_redeems_exactly_once(db):
    owner = make_user(db)
    child = make_child(db, owner)
    paper = make_paper(db, owner, child=child)
    gate = OtpGate(db)

    code = gate.mint(paper.id)
    assert gate.verify(paper.id, child.id, code) is True

    assert gate.redeem(paper.id, child.id, code).id == child.id
    with pytest.raises(InvalidOtp):
        gate.redeem(paper.id, child.id, code)
    assert gate.verify(paper.id, child.id, code) is False


def test_string_code_is_accepted(db):
    owner = make_user(db)
    child = make_child(db, owner)
    paper = make_paper(db, owner, child=child)
    gate = OtpGate(db)
    code = gate.mint(paper.id)

    assert gate.redeem(str(paper.id), str(child.id), f" {code} ").id == child.id


def test_remint_invalidates_previous_code(db):
    owner = make_user(db)
    child = make_child(db, owner)
    paper = make_paper(db, owner, child=child)
    gate = OtpGate(db)

    old = gate.mint(paper.id)
    new = gate.mint(paper.id)
    while new == old:
        new = gate.mint(paper.id)

    with pytest.raises(InvalidOtp):
        gate.redeem(paper.id, child.id, old)
    assert gate.redeem(paper.id, child.id, new).id == child.id


def test_wrong_child_gets_the_same_error(db):
    owner = make_user(db)
    child = make_child(db, owner, name="Asha")
    other = make_child(db, owner, name="Ravi")
    paper = make_paper(db, owner, child=child)
    gate = OtpGate(db)
    code = gate.mint(paper.id)

    with pytest.raises(InvalidOtp) as wrong_child:
        gate.redeem(paper.id, other.id, code)
    with pytest.raises(InvalidOtp) as wrong_code:
        gate.redeem(paper.id, child.id, 1)
    with pytest.raises(InvalidOtp) as unknown_child:
        gate.redeem(paper.id, 999, code)

    assert wrong_child.value.message == wrong_code.value.message == unknown_child.value.message
    # Failed attempts do not burn the code
    assert gate.redeem(paper.id, child.id, code).id == child.id


def test_consume_clears_code(db):
    owner = make_user(db)
    child = make_child(db, owner)
    paper = make_paper(db, owner, child=child)
    gate = OtpGate(db)
    code = gate.mint(paper.id)

    gate.consume(paper.id)

    assert gate.verify(paper.id, child.id, code) is False


def test_mint_unknown_paper(db):
    with pytest.raises(NotFound):
        OtpGate(db).mint(4242)


def test_child_token_is_scoped(db):
    owner = make_user(db)
    child = make_child(db, owner)

    claims = decode_token(OtpGate.issue_child_token(child, 7))

    assert claims["sub"] == str(child.id)
    assert claims["role"] == "child"
    assert claims["paper_id"] == 7
