import pytest

from instagen_core.posts import CachedPost, normalize_post, normalize_posts, rank_by_engagement


def test_normalize_scraper_item(raw_post):
    post = normalize_post(raw_post(3, comments=2))

    assert post.post_id == "post-3"
    assert post.username == "competitor"
    assert post.likes == 30
    assert post.comments == 2
    assert post.engagement == 32
    assert post.post_url == "https://www.instagram.com/p/3/"
    assert post.image_url == "https://cdn.example.com/3.jpg"
    assert post.profile_url == "https://www.instagram.com/competitor/"
    assert post.hashtags == ["fitness", "gym"]


def test_normalize_stored_row_shape():
    post = normalize_post(
        {
            "post_id": "abc",
            "username": "nike",
            "likes": "15",
            "comments": None,
            "hashtags": "#run, #shoes",
            "image_url": "https://cdn.example.com/a.jpg",
            "location": "  ",
        }
    )

    assert post.post_id == "abc"
    assert post.likes == 15
    assert post.comments == 0
    assert post.hashtags == ["run", "shoes"]
    assert post.location is None


@pytest.mark.parametrize("likes", [None, "many", -5, True, float("inf"), float("-inf"), float("nan"), "1e999"])
def test_bad_counts_become_zero(likes):
    post = normalize_post({"id": "1", "ownerUsername": "x", "likesCount": likes})

    assert post.likes == 0


@pytest.mark.parametrize("payload", [None, {}, "post", 42])
def test_non_post_payloads_are_rejected(payload):
    assert normalize_post(payload) is None


def test_normalize_posts_skips_invalid_items(raw_post):
    existing = CachedPost(post_id="x", username="y")

    posts = normalize_posts([raw_post(1), None, existing, "junk"])

    assert [post.post_id for post in posts] == ["post-1", "x"]
    assert posts[1] is existing
    assert normalize_posts(None) == []


def test_rank_by_engagement(raw_post):
    posts = normalize_posts([raw_post(2), raw_post(9, comments=5), raw_post(4)])

    ranked = rank_by_engagement(posts)
    assert [post.post_id for post in ranked] == ["post-9", "post-4", "post-2"]
    assert [post.post_id for post in rank_by_engagement(posts, limit=1)] == ["post-9"]


def test_dict_conversion(raw_post):
    post = normalize_post(raw_post(5))

    data = post.to_dict()
    assert data["engagement"] == 50
    assert CachedPost.from_dict(data) == post

    with pytest.raises(ValueError):
        CachedPost.from_dict({})


def test_large_counts_keep_full_precision():
    post = normalize_post({"id": "1", "ownerUsername": "x", "likesCount": 10**20, "commentsCount": "123456789012345678901"})

    assert post.likes == 10**20
    assert post.comments == 123456789012345678901


def test_non_finite_count_does_not_drop_the_batch(raw_post):
    posts = normalize_posts([raw_post(1), {"id": "x", "ownerUsername": "y", "likesCount": float("inf")}])

    assert [post.post_id for post in posts] == ["post-1", "x"]
    assert posts[1].likes == 0
