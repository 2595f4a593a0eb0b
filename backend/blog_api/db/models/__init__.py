from blog_api.db.models.blog import Blog, BlogTopic
from blog_api.db.models.blog_comment import BlogComment
from blog_api.db.models.email_job import EmailJob
from blog_api.db.models.invitation import UserInvitation
from blog_api.db.models.reactions import BlogBookmark, BlogCommentLike, BlogLike
from blog_api.db.models.topic import Topic, TopicFollow
from blog_api.db.models.user import User

__all__ = [
    "Blog",
    "BlogBookmark",
    "BlogComment",
    "BlogCommentLike",
    "BlogLike",
    "BlogTopic",
    "EmailJob",
    "Topic",
    "TopicFollow",
    "User",
    "UserInvitation",
]
