"""
Tests for Entity persistence, attribute handling, hooks and validation.
"""

from __future__ import annotations

import json
import sqlite3

import pytest

from quarry.faults import (
    ModelFault,
    NotFoundError,
    NotFoundFault,
    PersistenceFault,
    ValidationFault,
)
from quarry.models import Entity, EntityRegistry

from .entities import Account, Post, Profile, create_blog_schema


@pytest.fixture
def blog(db):
    create_blog_schema(db)
    return db


def make_account(**overrides):
    values = {"name": "Ana", "email": "ana@example.com"}
    values.update(overrides)
    return Account.create(values)


# ============================================================================
# Declaration
# ============================================================================


class TestDeclaration:
    """Meta parsing and registration."""

    def test_default_table_names(self):
        class Category(Entity):
            pass

        class Box(Entity):
            pass

        class BlogPost(Entity):
            pass

        assert Category._meta.table == "categories"
        assert Box._meta.table == "boxes"
        assert BlogPost._meta.table == "blog_posts"

    def test_explicit_table_and_key(self):
        class Legacy(Entity):
            class Meta:
                table = "tbl_legacy"
                primary_key = "legacy_id"

        assert Legacy._meta.table == "tbl_legacy"
        assert Legacy._meta.primary_key == "legacy_id"
        assert Legacy._meta.guarded == ["legacy_id"]

    def test_registered(self):
        assert EntityRegistry.get("Account") is Account

    def test_abstract_not_registered(self):
        class Base(Entity):
            class Meta:
                abstract = True
                timestamps = False

        class Child(Base):
            pass

        assert EntityRegistry.get("Base") is None
        assert EntityRegistry.get("Child") is Child
        assert Child._meta.timestamps is False

    def test_meta_options(self):
        meta = Account._meta
        assert meta.hidden == ["password"]
        assert meta.casts == {"settings": "json", "active": "bool"}
        assert meta.timestamps is True
        assert Post._meta.soft_deletes is True


# ============================================================================
# Attributes
# ============================================================================


class TestAttributes:
    """fill, mutators, accessors and casts."""

    def test_fillable_allow_list_blocks_everything_else(self):
        acct = Account({"name": "Ana", "email": "a@x.com", "is_admin": True, "id": 7})
        assert acct.attributes == {"name": "Ana", "email": "a@x.com"}

    def test_guarded_deny_list(self):
        class Note(Entity):
            class Meta:
                guarded = ["id", "secret"]

        note = Note({"title": "t", "secret": "s", "id": 3})
        assert note.attributes == {"title": "t"}

    def test_no_fillable_admits_everything_but_the_key(self):
        class Memo(Entity):
            pass

        memo = Memo({"id": 5, "anything": 1})
        assert memo.attributes == {"anything": 1}

    def test_mutator_runs_on_fill_and_assignment(self):
        acct = Account(email="ANA@Example.COM")
        assert acct.email == "ana@example.com"
        acct.email = "BO@X.COM"
        assert acct.email == "bo@x.com"

    def test_accessor(self):
        acct = Account(name="Ana", email="a@x.com")
        assert acct.display_name == "Ana <a@x.com>"

    def test_missing_attribute_is_none(self):
        assert Account().nickname is None

    def test_casts_round_trip(self, blog):
        acct = make_account(settings={"theme": "dark"}, active=False)
        raw = blog.fetch_one('SELECT "settings", "active" FROM "accounts" WHERE "id" = ?', [acct.id])
        assert json.loads(raw["settings"]) == {"theme": "dark"}
        assert raw["active"] == 0

        loaded = Account.find(acct.id)
        assert loaded.settings == {"theme": "dark"}
        assert loaded.active is False


# ============================================================================
# Persistence
# ============================================================================


class TestPersistence:
    """save, delete, refresh and the mass-assignment helpers."""

    def test_insert_sets_key_and_is_findable(self, blog):
        acct = Account(name="Ana", email="ana@example.com")
        assert acct.save() is True
        assert acct.id is not None
        assert acct.persisted
        assert Account.find(acct.id).email == "ana@example.com"

    def test_supplied_key_is_ignored_on_create(self, blog):
        acct = Account.create({"id": 999, "name": "Ana", "email": "a@x.com"})
        assert acct.id != 999
        assert len(Account.where_in("email", ["a@x.com"]).get()) == 1

    def test_second_save_updates_in_place(self, blog):
        acct = make_account()
        acct.name = "Ana Maria"
        acct.save()
        assert Account.count() == 1
        assert Account.find(acct.id).name == "Ana Maria"

    def test_timestamps(self, blog):
        acct = make_account()
        assert acct.created_at is not None
        assert acct.updated_at is not None

        profile = Profile.create({"account_id": acct.id, "bio": "hi"})
        assert "created_at" not in profile.attributes

    def test_unique_violation_raises_persistence_fault(self, blog):
        make_account()
        with pytest.raises(PersistenceFault) as exc_info:
            make_account(name="Other")
        fault = exc_info.value
        assert fault.code == "PERSISTENCE_FAILED"
        assert isinstance(fault.cause, sqlite3.IntegrityError)
        assert isinstance(fault.__cause__, sqlite3.IntegrityError)
        assert Account.count() == 1

    def test_delete_leaves_instance_inert(self, blog):
        acct = make_account()
        assert acct.delete() is True
        assert Account.find(acct.id) is None
        assert not acct.persisted
        with pytest.raises(PersistenceFault):
            acct.save()

    def test_delete_without_key_is_a_no_op(self, blog):
        assert Account(name="Ana").delete() is False

    def test_refresh(self, blog):
        acct = make_account()
        Account.where("id", acct.id).update({"name": "Zed"})
        assert acct.refresh().name == "Zed"

    def test_refresh_missing_row(self, blog):
        acct = make_account()
        Account.destroy(acct.id)
        with pytest.raises(NotFoundFault):
            acct.refresh()

    def test_update_or_create(self, blog):
        created = Account.update_or_create({"email": "ana@example.com"}, {"name": "Ana"})
        updated = Account.update_or_create({"email": "ana@example.com"}, {"name": "Ana B"})
        assert created.id == updated.id
        assert Account.count() == 1
        assert Account.find(created.id).name == "Ana B"

    def test_first_or_create(self, blog):
        first = Account.first_or_create({"email": "ana@example.com"}, {"name": "Ana"})
        again = Account.first_or_create({"email": "ana@example.com"}, {"name": "Ignored"})
        assert first == again
        assert again.name == "Ana"
        assert Account.count() == 1

    def test_destroy(self, blog):
        a = make_account()
        b = make_account(email="bo@example.com")
        make_account(email="cy@example.com")
        assert Account.destroy([a.id, b.id]) == 2
        assert Account.destroy([]) == 0
        assert Account.count() == 1

    def test_find_or_fail(self, blog):
        with pytest.raises(NotFoundFault) as exc_info:
            Account.find_or_fail(999)
        assert exc_info.value.code == "ENTITY_NOT_FOUND"
        assert isinstance(exc_info.value, NotFoundError)

    def test_equality_by_class_and_key(self, blog):
        acct = make_account()
        same = Account.find(acct.id)
        assert acct == same
        assert hash(acct) == hash(same)
        assert Account(name="x") != Account(name="x")

    def test_unsaved_entities_are_unhashable(self, blog):
        acct = Account(name="Ana", email="ana@example.com")
        with pytest.raises(TypeError):
            hash(acct)
        acct.save()
        assert acct in {acct}


class TestSoftDeletes:
    """deleted_at visibility."""

    def test_soft_delete_visibility(self, blog):
        keep = Post.create({"title": "keep"})
        gone = Post.create({"title": "gone"})
        gone.soft_delete()

        assert gone.trashed()
        assert [p.title for p in Post.all()] == ["keep"]
        assert Post.with_trashed().count() == 2
        assert [p.id for p in Post.only_trashed().get()] == [gone.id]
        assert Post.find(gone.id) is None
        assert keep.trashed() is False

    def test_restore(self, blog):
        post = Post.create({"title": "back"})
        post.soft_delete()
        post.restore()
        assert Post.count() == 1

    def test_soft_delete_falls_back_without_option(self, blog):
        acct = make_account()
        assert acct.soft_delete() is True
        assert Account.count() == 0
        assert acct.restore() is False


# ============================================================================
# Hooks
# ============================================================================


class TestHooks:
    """Life-cycle events."""

    def test_event_order(self, blog):
        events = []
        for name in ("creating", "created", "updating", "updated", "deleting", "deleted"):
            Account.on(name, lambda sender, instance, _n=name, **kw: events.append(_n))

        acct = make_account()
        acct.name = "B"
        acct.save()
        acct.delete()
        assert events == ["creating", "created", "updating", "updated", "deleting", "deleted"]

    def test_creating_can_modify_instance(self, blog):
        @Account.creating
        def default_password(sender, instance, **kwargs):
            instance.set_attribute("password", "secret")

        acct = make_account()
        assert Account.find(acct.id).password == "secret"

    def test_raising_receiver_aborts_insert(self, blog):
        @Account.creating
        def refuse(sender, instance, **kwargs):
            raise RuntimeError("not today")

        with pytest.raises(RuntimeError):
            make_account()
        assert Account.count() == 0

    def test_created_sees_key(self, blog):
        seen = []
        Account.created(lambda sender, instance, **kw: seen.append(instance.id))
        acct = make_account()
        assert seen == [acct.id]

    def test_hooks_filter_by_class(self, blog):
        calls = []
        Post.creating(lambda sender, instance, **kw: calls.append(sender))
        make_account()
        assert calls == []
        Post.create({"title": "t"})
        assert calls == [Post]

    def test_unknown_event(self):
        with pytest.raises(ModelFault) as exc_info:
            Account.on("exploding", lambda sender, **kw: None)
        assert exc_info.value.code == "UNKNOWN_EVENT"


# ============================================================================
# Validation & serialization
# ============================================================================


class TestValidation:
    """Declared rules."""

    def test_valid(self):
        assert Account(name="Ana", email="ana@example.com").validate() is True

    def test_errors_with_custom_message(self):
        errors = Account(name="A", email="nope").validate()
        assert errors == {
            "name": ["The name field is invalid for rule min:2."],
            "email": ["Please give a real email address."],
        }

    def test_validate_explicit_data(self):
        errors = Account().validate({"name": "Ana"})
        assert errors == {
            "email": [
                "The email field is invalid for rule required.",
                "Please give a real email address.",
            ]
        }

    def test_empty_data_is_not_current_attributes(self):
        errors = Account(name="Ana", email="ana@example.com").validate({})
        assert set(errors) == {"name", "email"}
        assert "The name field is invalid for rule required." in errors["name"]

    def test_validate_or_fail(self):
        with pytest.raises(ValidationFault) as exc_info:
            Account(name="A", email="a@x.com").validate_or_fail()
        assert exc_info.value.errors == {"name": ["The name field is invalid for rule min:2."]}

    def test_save_does_not_validate(self, blog):
        acct = Account.create({"name": "A", "email": "bad"})
        assert acct.persisted


class TestSerialization:
    """to_dict / to_json."""

    def test_hidden_fields_dropped(self):
        acct = Account(name="Ana", email="a@x.com", password="pw", settings='{"a": 1}')
        data = acct.to_dict()
        assert "password" not in data
        assert data["settings"] == {"a": 1}

    def test_to_json(self):
        acct = Account(name="Ana", email="a@x.com", active=1)
        assert json.loads(acct.to_json()) == {"name": "Ana", "email": "a@x.com", "active": True}
