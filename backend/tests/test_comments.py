from datetime import datetime, timedelta

import pytest
from sqlalchemy import select

from conftest import as_principal
from blog_api.core.errors import NotFoundError, UnauthorizedError, ValidationError
from blog_api.db.models.blog_comment import BlogComment
from blog_api.db.models.reactions import BlogCommentLike
from blog_api.services.blogs import create_blog
from blog_api.services.comments import (
    create_comment,
    delete_comment,
    list_blog_comments,
    list_comment_replies,
    toggle_comment_like,
    update_comment,
)


@pytest.fixture()
def published_blog(db_session, make_user, make_topic):
    author = make_user()
    go = make_topic("go")
    return create_blog(
        db_session, as_principal(author), title="T", content={"text": "x"}, status="published", topic_ids=[go.id]
    )


def test_create_top_level_comment_and_reply(db_session, make_user, published_blog):
    actor = as_principal(make_user())
    top = create_comment(db_session, actor, blog_id=published_blog.id, content="  nice post  ")
    reply = create_comment(db_session, actor, blog_id=published_blog.id, content="thanks", parent_comment_id=top.id)

    assert top.content == "nice post"
    assert top.parent_comment_id is None
    assert reply.parent_comment_id == top.id


def test_reply_to_reply_stays_two_levels(db_session, make_user, published_blog):
    actor = as_principal(make_user())
    top = create_comment(db_session, actor, blog_id=published_blog.id, content="top")
    reply = create_comment(db_session, actor, blog_id=published_blog.id, content="reply", parent_comment_id=top.id)
    nested = create_comment(db_session, actor, blog_id=published_blog.id, content="nested", parent_comment_id=reply.id)

    assert nested.parent_comment_id == top.id


def test_create_comment_validation(db_session, make_user, make_topic, published_blog):
    actor = as_principal(make_user())
    with pytest.raises(ValidationError, match="blog comment content cannot be empty"):
        create_comment(db_session, actor, blog_id=published_blog.id, content="   ")
    with pytest.raises(NotFoundError, match="blog not found"):
        create_comment(db_session, actor, blog_id=404, content="hi")
    with pytest.raises(NotFoundError, match="parent comment not found"):
        create_comment(db_session, actor, blog_id=published_blog.id, content="hi", parent_comment_id=404)

    rust = make_topic("rust")
    other_blog = create_blog(
        db_session, actor, title="Other", content={"text": "y"}, status="published", topic_ids=[rust.id]
    )
    foreign = create_comment(db_session, actor, blog_id=other_blog.id, content="elsewhere")
    with pytest.raises(ValidationError, match="parent comment is not blog's comment"):
        create_comment(db_session, actor, blog_id=published_blog.id, content="hi", parent_comment_id=foreign.id)


def test_update_and_delete_are_author_only(db_session, make_user, published_blog):
    author, other = as_principal(make_user()), as_principal(make_user())
    comment = create_comment(db_session, author, blog_id=published_blog.id, content="first")

    with pytest.raises(UnauthorizedError, match="unauthorized to update blog comment"):
        update_comment(db_session, other, comment.id, content="hijack")
    with pytest.raises(ValidationError, match="blog comment content is required"):
        update_comment(db_session, author, comment.id, content=" ")
    updated = update_comment(db_session, author, comment.id, content="edited")
    assert updated.content == "edited"
    assert updated.updated_at is not None

    with pytest.raises(UnauthorizedError, match="unauthorized to delete blog comment"):
        delete_comment(db_session, other, comment.id)
    with pytest.raises(NotFoundError, match="blog comment not found"):
        delete_comment(db_session, author, 404)


def test_delete_cascades_to_replies_and_likes(db_session, make_user, published_blog):
    author = as_principal(make_user())
    top = create_comment(db_session, author, blog_id=published_blog.id, content="top")
    reply = create_comment(db_session, author, blog_id=published_blog.id, content="reply", parent_comment_id=top.id)
    toggle_comment_like(db_session, author, reply.id)

    delete_comment(db_session, author, top.id)

    assert db_session.scalars(select(BlogComment)).all() == []
    assert db_session.scalars(select(BlogCommentLike)).all() == []


def test_comment_like_toggle(db_session, make_user, published_blog):
    actor = as_principal(make_user())
    comment = create_comment(db_session, actor, blog_id=published_blog.id, content="hi")

    assert toggle_comment_like(db_session, actor, comment.id).added is True
    assert toggle_comment_like(db_session, actor, comment.id).added is False
    with pytest.raises(NotFoundError, match="blog comment not found"):
        toggle_comment_like(db_session, actor, 404)


def test_list_top_level_comments_newest_first_with_counts(db_session, make_user, published_blog):
    alice, bob = as_principal(make_user()), as_principal(make_user())
    base = datetime(2026, 10, 19, 12, 0, 0)
    old = create_comment(db_session, alice, blog_id=published_blog.id, content="old")
    new = create_comment(db_session, bob, blog_id=published_blog.id, content="new")
    old.created_at, new.created_at = base, base + timedelta(minutes=5)
    db_session.commit()
    create_comment(db_session, bob, blog_id=published_blog.id, content="reply", parent_comment_id=old.id)
    create_comment(db_session, alice, blog_id=published_blog.id, content="reply 2", parent_comment_id=old.id)
    toggle_comment_like(db_session, alice, old.id)
    toggle_comment_like(db_session, bob, old.id)

    items, total = list_blog_comments(db_session, published_blog.id, skip=0, limit=10)

    assert total == 2
    assert [v.comment.id for v in items] == [new.id, old.id]
    assert (items[1].like_count, items[1].reply_count) == (2, 2)
    assert (items[0].like_count, items[0].reply_count) == (0, 0)

    page, total = list_blog_comments(db_session, published_blog.id, skip=1, limit=1)
    assert total == 2
    assert [v.comment.id for v in page] == [old.id]


def test_list_replies(db_session, make_user, published_blog):
    actor = as_principal(make_user())
    top = create_comment(db_session, actor, blog_id=published_blog.id, content="top")
    first = create_comment(db_session, actor, blog_id=published_blog.id, content="one", parent_comment_id=top.id)
    second = create_comment(db_session, actor, blog_id=published_blog.id, content="two", parent_comment_id=top.id)
    first.created_at = datetime(2026, 1, 1)
    db_session.commit()
    toggle_comment_like(db_session, actor, second.id)

    items, total = list_comment_replies(db_session, top.id, skip=0, limit=10)

    assert total == 2
    assert [v.comment.id for v in items] == [second.id, first.id]
    assert items[0].like_count == 1
    assert all(v.reply_count == 0 for v in items)

    with pytest.raises(NotFoundError, match="blog comment not found"):
        list_comment_replies(db_session, 404, skip=0, limit=10)


def test_comments_on_a_draft_are_hidden_from_other_users(db_session, make_user):
    author = as_principal(make_user())
    stranger = as_principal(make_user())
    draft = create_blog(db_session, author, title="WIP", content={"text": "x"}, status="draft")
    top = create_comment(db_session, author, blog_id=draft.id, content="note to self")
    create_comment(db_session, author, blog_id=draft.id, content="more", parent_comment_id=top.id)

    with pytest.raises(NotFoundError, match="blog comment not found"):
        toggle_comment_like(db_session, stranger, top.id)
    with pytest.raises(NotFoundError, match="blog comment not found"):
        list_comment_replies(db_session, top.id, viewer=stranger, skip=0, limit=10)
    with pytest.raises(NotFoundError, match="blog comment not found"):
        list_comment_replies(db_session, top.id, skip=0, limit=10)
    assert db_session.scalar(select(BlogCommentLike).where(BlogCommentLike.comment_id == top.id)) is None

    assert toggle_comment_like(db_session, author, top.id).added is True
    items, total = list_comment_replies(db_session, top.id, viewer=author, skip=0, limit=10)
    assert total == 1
    assert items[0].comment.content == "more"
