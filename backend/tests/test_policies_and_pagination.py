import pytest

from portal import models
from portal.errors import Forbidden, InvalidArgument
from portal.policies import allows, authorize, is_owner
from portal.services.applications import check_transition, overall_score
from portal.services.enrollments import grade_letter, grade_quiz
from portal.utils.pagination import pagination_block, resolve_sort
from portal.utils.text import escape_like, slugify


def _user(uid, **kw):
    return models.User(id=uid, full_name="U", email=f"u{uid}@example.com", password_hash="x", phone="1", **kw)


def test_admin_always_passes():
    admin = _user(1, role="admin")
    assert allows(admin, "process_refund", "payment")
    assert allows(admin, "some_unknown_action", "thing")


def test_owner_fields_accept_collections():
    course = models.Course(
        title="t", slug="t", description="d", category="other", level="beginner",
        duration_hours=1, duration_weeks=1, instructors=[{"user_id": 5}, {"user_id": 6}],
    )
    assert allows(_user(6), "manage", "course", course)
    assert not allows(_user(7), "manage", "course", course)
    assert is_owner(_user(5), {"owner_id": 5}, ("owner_id",))


def test_permission_rules():
    clerk = _user(2, permissions=["manage_payments"])
    payment = models.Payment(user_id=99, transaction_id="T", order_id="O", payment_type="other",
                             entity_type="Job", entity_id=1, amount_original=1, amount_final=1,
                             payment_method="upi", payment_gateway="manual")
    assert allows(clerk, "update_status", "payment", payment)
    assert allows(_user(99), "read", "payment", payment)
    with pytest.raises(Forbidden):
        authorize(_user(99), "update_status", "payment", payment)


def test_unlisted_policy_denies_non_admins():
    with pytest.raises(Forbidden):
        authorize(_user(3), "drop_tables", "database")


@pytest.mark.parametrize("current,new", [
    ("submitted", "shortlisted"),
    ("shortlisted", "rejected"),
    ("on_hold", "under_review"),
    ("interviewed", "on_hold"),
])
def test_allowed_transitions(current, new):
    check_transition(current, new)


@pytest.mark.parametrize("current,new", [
    ("shortlisted", "submitted"),
    ("selected", "on_hold"),
    ("rejected", "under_review"),
    ("submitted", "withdrawn"),
])
def test_refused_transitions(current, new):
    with pytest.raises(InvalidArgument):
        check_transition(current, new)


def test_overall_score_weights():
    assert overall_score({"technical_score": 100, "experience_score": 100, "education_score": 100,
                          "skills_match": 100, "cultural_fit_score": 100}) == 100
    assert overall_score({"education_score": 40}) == 6
    assert overall_score({"cultural_fit_score": 85}) == 9
    assert isinstance(overall_score({"technical_score": 33}), int)


@pytest.mark.parametrize("score,letter", [(95, "A+"), (90, "A"), (85.5, "B+"), (80, "B"), (75, "C+"),
                                          (70, "C"), (60, "D"), (59.99, "F")])
def test_grade_letters(score, letter):
    assert grade_letter(score) == letter


def test_grade_quiz_points_and_normalisation():
    quiz = {"questions": [
        {"correct_answer": "Paris", "points": 2},
        {"correct_answer": "true"},
        {"correct_answer": "42", "points": 0},
    ]}
    score, pct, graded = grade_quiz(quiz, [{"question_index": 0, "answer": " paris "},
                                           {"question_index": 2, "answer": "42"}])
    assert score == 2
    assert pct == pytest.approx(66.67)
    assert [g["is_correct"] for g in graded] == [True, False, True]


def test_resolve_sort():
    columns = {"title": models.Course.title, "price": models.Course.price_amount}
    clauses = resolve_sort("-price,title", columns)
    assert [str(c) for c in clauses] == [str(models.Course.price_amount.desc()), str(models.Course.title.asc())]
    assert resolve_sort(None, columns) == []
    with pytest.raises(InvalidArgument):
        resolve_sort("password_hash", columns)


def test_pagination_block():
    assert pagination_block(2, 10, 25) == {
        "current_page": 2,
        "total_pages": 3,
        "total_items": 25,
        "items_per_page": 10,
        "has_next_page": True,
        "has_prev_page": True,
    }
    empty = pagination_block(1, 10, 0)
    assert empty["total_pages"] == 0
    assert not empty["has_next_page"] and not empty["has_prev_page"]


def test_text_helpers():
    assert slugify("  Intro to C++ & Rust!  ") == "intro-to-c-rust"
    assert escape_like("50%_off") == "50\\%\\_off"


def test_page_query_validation(client):
    assert client.get("/api/courses", params={"page": 0}).status_code == 400
    assert client.get("/api/courses", params={"limit": 101}).status_code == 400
