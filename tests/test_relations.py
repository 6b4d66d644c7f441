"""
Tests for has-one, has-many, belongs-to and many-to-many relations.
"""

from __future__ import annotations

import pytest

from quarry.faults import ModelFault, PersistenceFault
from quarry.models import (
    BelongsTo,
    BelongsToMany,
    Entity,
    HasMany,
    HasOne,
    default_foreign_key,
    default_pivot_table,
)

from .entities import Account, Comment, Post, Profile, Tag, create_blog_schema


@pytest.fixture
def blog(db):
    create_blog_schema(db)
    return db


@pytest.fixture
def ana(blog):
    return Account.create({"name": "Ana", "email": "ana@example.com"})


@pytest.fixture
def tags(blog):
    return [Tag.create({"name": n}) for n in ("python", "sql", "orm")]


class TestNaming:
    def test_default_keys(self):
        assert default_foreign_key(Account) == "account_id"
        assert default_foreign_key("BlogPost") == "blog_post_id"
        assert default_pivot_table(Tag, Post) == "post_tag"
        assert default_pivot_table(Post, Tag) == "post_tag"

    def test_relation_types(self):
        acct = Account(name="Ana")
        post = Post(title="t")
        assert isinstance(acct.posts(), HasMany)
        assert isinstance(acct.profile(), HasOne)
        assert isinstance(post.account(), BelongsTo)
        assert isinstance(post.tags(), BelongsToMany)
        assert post.tags().table == "post_tag"


# ============================================================================
# One-to-one / one-to-many
# ============================================================================


class TestHasMany:
    def test_create_through_relation(self, ana):
        post = ana.posts().create({"title": "Hello"})
        assert post.account_id == ana.id
        assert ana.posts().count() == 1
        assert ana.posts().where("title", "Hello").first() == post

    def test_create_many_and_save_many(self, ana):
        ana.posts().create_many([{"title": "a"}, {"title": "b"}])
        loose = Post(title="c")
        ana.posts().save_many([loose])
        assert loose.persisted
        assert sorted(p.title for p in ana.posts().get()) == ["a", "b", "c"]

    def test_scoped_to_owner(self, ana):
        bo = Account.create({"name": "Bo", "email": "bo@example.com"})
        ana.posts().create({"title": "mine"})
        bo.posts().create({"title": "theirs"})
        assert [p.title for p in ana.posts().get()] == ["mine"]

    def test_soft_deleted_children_hidden(self, ana):
        post = ana.posts().create({"title": "gone"})
        post.soft_delete()
        assert ana.posts().get() == []

    def test_unsaved_owner_has_no_children(self, blog):
        assert Account(name="Ghost").posts().get() == []

    def test_make_does_not_save(self, ana):
        draft = ana.posts().make({"title": "draft"})
        assert draft.account_id == ana.id
        assert not draft.persisted
        assert ana.posts().count() == 0


class TestHasOne:
    def test_has_one(self, ana):
        ana.profile().create({"bio": "hi"})
        assert ana.profile().first().bio == "hi"
        assert ana.profile().get_results().bio == "hi"

    def test_cascade_delete(self, ana):
        ana.profile().create({"bio": "hi"})
        ana.delete()
        assert Profile.count() == 0


class TestBelongsTo:
    def test_resolves_owner(self, ana):
        post = ana.posts().create({"title": "Hello"})
        assert post.account().first() == ana
        assert Post.find(post.id).account().get_results() == ana

    def test_associate_and_dissociate(self, ana):
        post = Post.create({"title": "orphan"})
        post.account().associate(ana)
        post.save()
        assert Post.find(post.id).account_id == ana.id

        post.account().dissociate()
        post.save()
        assert Post.find(post.id).account_id is None
        assert post.account().first() is None

    def test_nested_through_comments(self, ana):
        post = ana.posts().create({"title": "Hello"})
        comment = post.comments().create({"body": "nice"})
        assert comment.post().first().account().first() == ana
        assert Comment.count() == 1


# ============================================================================
# Many-to-many
# ============================================================================


class TestBelongsToMany:
    def test_attach_and_resolve(self, ana, tags):
        post = ana.posts().create({"title": "Hello"})
        python, sql, _ = tags
        post.tags().attach([python.id, sql])
        assert sorted(t.name for t in post.tags().get()) == ["python", "sql"]
        assert post.tags().related_ids() == [python.id, sql.id]
        assert [p.title for p in python.posts().get()] == ["Hello"]

    def test_detach(self, ana, tags):
        post = ana.posts().create({"title": "Hello"})
        post.tags().attach(tags)
        assert post.tags().detach([tags[0].id]) == 1
        assert post.tags().count() == 2
        assert post.tags().detach() == 2
        assert post.tags().get() == []

    def test_sync(self, ana, tags):
        python, sql, orm = tags
        post = ana.posts().create({"title": "Hello"})
        post.tags().attach([python.id, sql.id])

        result = post.tags().sync([sql.id, orm.id])
        assert result == {"attached": [orm.id], "detached": [python.id]}
        assert sorted(post.tags().related_ids()) == sorted([sql.id, orm.id])

    def test_toggle(self, ana, tags):
        python, sql, _ = tags
        post = ana.posts().create({"title": "Hello"})
        post.tags().attach(python)

        result = post.tags().toggle([python.id, sql.id])
        assert result == {"attached": [sql.id], "detached": [python.id]}
        assert post.tags().related_ids() == [sql.id]

    def test_duplicate_attach_raises(self, ana, tags):
        post = ana.posts().create({"title": "Hello"})
        post.tags().attach(tags[0])
        with pytest.raises(PersistenceFault):
            post.tags().attach(tags[0])

    def test_unsaved_owner(self, blog, tags):
        draft = Post(title="draft")
        assert draft.tags().get() == []
        with pytest.raises(PersistenceFault):
            draft.tags().attach(tags[0])

    def test_custom_pivot_names(self, blog):
        class Label(Entity):
            class Meta:
                timestamps = False

        class Article(Entity):
            class Meta:
                table = "posts"

        relation = Article().belongs_to_many(Label, "post_tag", "post_id", "tag_id")
        assert relation.table == "post_tag"
        assert relation.foreign_pivot_key == "post_id"
        assert relation.related_pivot_key == "tag_id"


# ============================================================================
# Loading
# ============================================================================


class TestLoad:
    def test_load_caches_results(self, ana):
        ana.posts().create({"title": "Hello"})
        ana.profile().create({"bio": "hi"})

        ana.load("posts", "profile")
        assert ana.relation_loaded("posts")
        assert [p.title for p in ana.get_attribute("posts")] == ["Hello"]

        data = ana.to_dict()
        assert data["posts"][0]["title"] == "Hello"
        assert data["profile"]["bio"] == "hi"

    def test_loaded_results_are_a_snapshot(self, ana):
        ana.load("posts")
        ana.posts().create({"title": "later"})
        assert ana.get_attribute("posts") == []
        assert ana.posts().count() == 1

    def test_unknown_relation(self, ana):
        with pytest.raises(ModelFault) as exc_info:
            ana.load("followers")
        assert exc_info.value.code == "UNKNOWN_RELATION"

    def test_relation_by_name(self, ana):
        post = ana.posts().create({"title": "Hello"})
        assert post.belongs_to("Account").first() == ana
        with pytest.raises(ModelFault):
            post.belongs_to("Nobody")

    def test_refresh_clears_loaded_relations(self, ana):
        ana.load("posts")
        ana.refresh()
        assert not ana.relation_loaded("posts")
