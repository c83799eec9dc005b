# tests/test_families.py

import pytest

from app.errors import ConflictError, ForbiddenError, NotFoundError, ValidationFailedError
from app.families import (
    FAMILY_CODE_ALPHABET,
    Registration,
    build_family_context,
    generate_family_code,
    get_my_family,
    list_members,
    regenerate_family_code,
    register_user,
    remove_member,
    update_member,
)
from app.models import AccountRole, FamilyMember
from app.permissions import FamilyRole, can_manage_family, can_review


def test_role_predicates():
    assert can_review(FamilyRole.ADMIN_PARENT)
    assert can_review(FamilyRole.PARENT)
    assert not can_review(FamilyRole.CHILD)
    assert can_manage_family(FamilyRole.ADMIN_PARENT)
    assert not can_manage_family(FamilyRole.PARENT)


def test_generated_codes_use_upper_alphanumerics():
    code = generate_family_code()

    assert len(code) == 8
    assert set(code) <= set(FAMILY_CODE_ALPHABET)


def test_first_parent_creates_family_as_admin(db):
    result = register_user(db, Registration(
        email="Anna@Example.com",
        password="s3cret-pass",
        name="Anna",
        role=AccountRole.PARENT,
        family_name="Lindqvist",
    ))

    assert result["family_role"] == "ADMIN_PARENT"
    assert result["user"]["email"] == "anna@example.com"
    assert len(result["family"]["family_code"]) == 8
    member = db.query(FamilyMember).one()
    assert member.role == FamilyRole.ADMIN_PARENT


def test_child_joins_with_family_code(db, family):
    result = register_user(db, Registration(
        email="lily@example.com",
        password="s3cret-pass",
        name="Lily",
        role=AccountRole.CHILD,
        family_code="abcd1234",
    ))

    assert result["family"]["id"] == family.family.id
    assert result["family_role"] == "CHILD"
    assert len(list_members(db, family.mom_ctx)) == 5


def test_register_rejects_duplicate_email_and_bad_code(db, family):
    with pytest.raises(ConflictError):
        register_user(db, Registration(
            email="erik@example.com", password="s3cret-pass", name="Erik", role=AccountRole.CHILD,
            family_code="ABCD1234",
        ))
    with pytest.raises(NotFoundError):
        register_user(db, Registration(
            email="new@example.com", password="s3cret-pass", name="New", role=AccountRole.CHILD,
            family_code="ZZZZ9999",
        ))
    with pytest.raises(ValidationFailedError):
        register_user(db, Registration(
            email="kid@example.com", password="s3cret-pass", name="Kid", role=AccountRole.CHILD,
            family_name="Solo",
        ))


def test_get_my_family(db, family):
    data = get_my_family(db, family.erik_ctx)

    assert data["family_code"] == "ABCD1234"
    assert data["member_count"] == 4
    assert data["role"] == "CHILD"


def test_only_admin_regenerates_family_code(db, family):
    with pytest.raises(ForbiddenError):
        regenerate_family_code(db, family.dad_ctx)

    regenerated = regenerate_family_code(db, family.mom_ctx)

    assert regenerated.family_code != "ABCD1234"
    assert len(regenerated.family_code) == 8


def _membership(db, user):
    return db.query(FamilyMember).filter(FamilyMember.user_id == user.id).one()


def test_parents_rename_members(db, family):
    member = update_member(db, family.dad_ctx, _membership(db, family.erik).id, "Erik Jr")
    assert member.user.name == "Erik Jr"

    with pytest.raises(ForbiddenError):
        update_member(db, family.erik_ctx, _membership(db, family.sasha).id, "Sash")


def test_member_removal_rules(db, family):
    with pytest.raises(ValidationFailedError):
        remove_member(db, family.mom_ctx, _membership(db, family.mom).id)
    with pytest.raises(ForbiddenError):
        remove_member(db, family.dad_ctx, _membership(db, family.mom).id)
    with pytest.raises(ForbiddenError):
        remove_member(db, family.erik_ctx, _membership(db, family.sasha).id)

    removed = remove_member(db, family.dad_ctx, _membership(db, family.sasha).id)

    assert removed["user_id"] == family.sasha.id
    assert [m.user.name for m in list_members(db, family.mom_ctx)] == ["Mom", "Dad", "Erik"]


def test_family_context_lists_members_for_the_assistant(db, family):
    context = build_family_context(db, family.mom_ctx)

    assert context["family_name"] == "Nordqvist"
    assert {m["name"]: m["role"] for m in context["members"]} == {
        "Mom": "ADMIN_PARENT", "Dad": "PARENT", "Erik": "CHILD", "Sasha": "CHILD",
    }
