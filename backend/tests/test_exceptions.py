from app.core.exceptions import (
    AppError,
    InfeasibleScheduleError,
    NoCandidateAvailableError,
    OfferAlreadyResolvedError,
    OverrideConflictError,
    ResourceNotFoundError,
    SlotInvariantError,
    StoreWriteError,
)


def test_app_error_defaults():
    err = AppError("Generic error")
    assert err.status_code == 500
    assert err.details == {}


def test_infeasible_schedule_error_structure():
    conflicts = [{"class_id": "8a", "subject_id": "math", "reason": "not_enough_slots"}]
    err = InfeasibleScheduleError("Cannot place math", class_id="8a", conflicts=conflicts)
    assert isinstance(err, AppError)
    assert err.status_code == 422
    assert err.class_id == "8a"
    assert err.details == {"class_id": "8a", "conflicts": conflicts}


def test_offer_already_resolved_error_structure():
    err = OfferAlreadyResolvedError("offer-1", "accepted")
    assert err.status_code == 409
    assert err.details == {"offer_id": "offer-1", "status": "accepted"}
    assert "offer-1" in err.message


def test_status_codes():
    assert OverrideConflictError("taken").status_code == 409
    assert NoCandidateAvailableError("none").status_code == 409
    assert SlotInvariantError("bad slot", details={"day": "Monday"}).details == {"day": "Monday"}
    assert SlotInvariantError("bad slot").status_code == 400
    assert StoreWriteError("rolled back").status_code == 500
    missing = ResourceNotFoundError("Class", "8a")
    assert missing.status_code == 404
    assert missing.message == "Class with id 8a not found"
