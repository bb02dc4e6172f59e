"""Tests for the data layer: every test runs against the JSON and SQL backends."""

from datetime import datetime, timedelta, timezone

import pytest

from entities import (
    DELETED_USER_NAME,
    AuthMethod,
    AuthType,
    Cycle,
    Link,
    LinkType,
    Movie,
    Tag,
    User,
    utc_now,
)
from error_handler import ConflictError, NotFoundError, UnauthorizedError


def _close(data, cycle_id, when=None):
    cycle = data.get_cycle(cycle_id)
    cycle.ended = when or utc_now()
    data.update_cycle(cycle)
    return cycle


def _movie(data, name, **kwargs):
    kwargs.setdefault("approved", True)
    movie = Movie(name=name, **kwargs)
    return data.add_movie(movie)


class TestCycles:
    def test_only_one_open_cycle(self, data):
        assert data.get_current_cycle() is None
        first = data.add_cycle()
        assert data.get_current_cycle().id == first
        with pytest.raises(ConflictError):
            data.add_cycle()

    def test_planned_end_is_rounded_to_seconds(self, data):
        planned = datetime(2024, 6, 1, 20, 0, 0, 700_000, tzinfo=timezone.utc)
        cycle_id = data.add_cycle(planned)
        assert data.get_cycle(cycle_id).planned_end == datetime(2024, 6, 1, 20, 0, 1, tzinfo=timezone.utc)

    def test_reopening_while_another_is_open_fails(self, data):
        first = data.add_cycle()
        _close(data, first)
        data.add_cycle()
        cycle = data.get_cycle(first)
        cycle.ended = None
        with pytest.raises(ConflictError):
            data.update_cycle(cycle)

    def test_past_cycles_newest_first_with_watched(self, data):
        ids = []
        for _ in range(3):
            ids.append(data.add_cycle())
            _close(data, ids[-1])
        data.add_cycle()
        past = data.get_past_cycles(0, 10)
        assert [c.id for c in past] == list(reversed(ids))
        assert all(c.watched == [] for c in past)

    def test_negative_offset_is_zero(self, data):
        ids = []
        for _ in range(2):
            ids.append(data.add_cycle())
            _close(data, ids[-1])
        assert [c.id for c in data.get_past_cycles(-5, 10)] == [c.id for c in data.get_past_cycles(0, 10)]

    def test_update_cycle_inserts_unknown_id(self, data):
        ended = datetime(2023, 1, 1, tzinfo=timezone.utc)
        data.update_cycle(Cycle(id=42, ended=ended))
        assert data.get_cycle(42).ended == ended

    def test_unknown_cycle(self, data):
        with pytest.raises(NotFoundError):
            data.get_cycle(99)
        with pytest.raises(NotFoundError):
            data.get_movies_from_cycle(99)


class TestMovies:
    def test_add_requires_open_cycle(self, data):
        with pytest.raises(ConflictError, match="No cycle active"):
            data.add_movie(Movie(name="Alien"))

    def test_duplicate_title_rejected(self, data):
        data.add_cycle()
        _movie(data, "The Matrix (1999)")
        assert data.check_movie_exists("the  matrix (1999)")
        with pytest.raises(ConflictError):
            _movie(data, "THE MATRIX   (1999)")

    def test_links_and_tags_round_trip(self, data):
        cycle_id = data.add_cycle()
        user = User(name="alice")
        data.add_user(user)
        links = [
            Link(url="https://imdb.com/title/tt0078748", type=LinkType.IMDB),
            Link(url="https://letterboxd.com/film/alien", type=LinkType.MISC),
        ]
        for link in links:
            data.add_link(link)
        tag = Tag(name="Horror")
        data.add_tag(tag)

        movie_id = _movie(data, "Alien", links=links, tags=[tag], added_by=user, rating=8.5)
        movie = data.get_movie(movie_id)
        assert [l.url for l in movie.links] == [links[0].url, links[1].url]
        assert [t.name for t in movie.tags] == ["Horror"]
        assert movie.added_by.name == "alice"
        assert movie.cycle_added.id == cycle_id
        assert movie.cycle_watched is None
        assert movie.rating == 8.5
        assert [m.id for m in data.get_user_movies(user.id)] == [movie_id]

    def test_add_tag_and_link_are_idempotent(self, data):
        first = data.add_tag(Tag(name="Drama"))
        assert data.add_tag(Tag(name="drama")) == first
        assert data.find_tag("DRAMA") == first
        link_id = data.add_link(Link(url="https://Example.org/x"))
        assert data.add_link(Link(url="https://example.org/X")) == link_id
        assert data.find_link("https://example.org/x") == link_id
        with pytest.raises(NotFoundError):
            data.find_tag("Comedy")
        with pytest.raises(NotFoundError):
            data.find_link("https://nowhere.example")

    def test_delete_tag_and_link_detach_from_movies(self, data):
        data.add_cycle()
        link = Link(url="https://example.org/a")
        tag = Tag(name="Old")
        data.add_link(link)
        data.add_tag(tag)
        movie_id = _movie(data, "Nosferatu", links=[link], tags=[tag])
        data.delete_tag(tag.id)
        data.delete_link(link.id)
        movie = data.get_movie(movie_id)
        assert movie.tags == [] and movie.links == []
        assert data.get_tag(tag.id) is None
        assert data.get_link(link.id) is None

    def test_remove_movie_is_soft_and_drops_votes(self, data):
        data.add_cycle()
        user = User(name="alice")
        data.add_user(user)
        movie_id = _movie(data, "Heat")
        data.add_vote(user.id, movie_id)

        data.remove_movie(movie_id)
        movie = data.get_movie(movie_id)
        assert movie.removed
        assert movie.votes == []
        assert data.get_active_movies() == []
        assert not data.check_movie_exists("Heat")
        # a removed title may be nominated again
        _movie(data, "heat")

    def test_watched_movie_cannot_be_removed(self, data):
        cycle_id = data.add_cycle()
        movie_id = _movie(data, "Ran")
        cycle = _close(data, cycle_id)
        movie = data.get_movie(movie_id)
        movie.cycle_watched = cycle
        data.update_movie(movie)
        with pytest.raises(ConflictError):
            data.remove_movie(movie_id)

    def test_watched_cycle_must_be_ended(self, data):
        cycle_id = data.add_cycle()
        movie_id = _movie(data, "Ikiru")
        movie = data.get_movie(movie_id)
        movie.cycle_watched = data.get_cycle(cycle_id)
        with pytest.raises(ConflictError):
            data.update_movie(movie)

    def test_update_movie_upserts(self, data):
        cycle_id = data.add_cycle()
        movie = Movie(id=77, name="Stalker", cycle_added=data.get_cycle(cycle_id), approved=True)
        data.update_movie(movie)
        assert data.get_movie(77).name == "Stalker"
        movie.description = "A zone"
        data.update_movie(movie)
        assert data.get_movie(77).description == "A zone"

    def test_search_words_and_tags(self, data):
        data.add_cycle()
        anime = Tag(name="MAL")
        data.add_tag(anime)
        _movie(data, "Ghost in the Shell", tags=[anime])
        _movie(data, "Ghostbusters")
        assert {m.name for m in data.search_movie_titles("ghost")} == {"Ghost in the Shell", "Ghostbusters"}
        assert [m.name for m in data.search_movie_titles('ghost t:"mal"')] == ["Ghost in the Shell"]
        assert data.search_movie_titles("nothing") == []


class TestVotes:
    def test_vote_rules(self, data):
        data.add_cycle()
        user = User(name="alice")
        data.add_user(user)
        movie_id = _movie(data, "Tampopo")
        data.add_vote(user.id, movie_id)
        assert data.user_voted_for_movie(user.id, movie_id)
        with pytest.raises(ConflictError):
            data.add_vote(user.id, movie_id)
        with pytest.raises(NotFoundError):
            data.add_vote(user.id, 999)
        with pytest.raises(NotFoundError):
            data.add_vote(999, movie_id)

        data.delete_vote(user.id, movie_id)
        assert not data.user_voted_for_movie(user.id, movie_id)
        with pytest.raises(NotFoundError):
            data.delete_vote(user.id, movie_id)

    def test_vote_records_current_cycle(self, data):
        cycle_id = data.add_cycle()
        user = User(name="alice")
        data.add_user(user)
        movie_id = _movie(data, "Paprika")
        data.add_vote(user.id, movie_id)
        assert [(v.movie_id, v.cycle_id) for v in data.get_votes(user.id)] == [(movie_id, cycle_id)]
        assert [m.id for m in data.get_user_votes(user.id)] == [movie_id]

    def test_no_vote_without_open_cycle(self, data):
        cycle_id = data.add_cycle()
        user = User(name="alice")
        data.add_user(user)
        movie_id = _movie(data, "Akira")
        _close(data, cycle_id)
        with pytest.raises(ConflictError):
            data.add_vote(user.id, movie_id)

    def test_decay_keeps_recent_and_watched_votes(self, data):
        user = User(name="alice")
        data.add_user(user)

        c1 = data.add_cycle()
        x = _movie(data, "X")
        w = _movie(data, "W")
        data.add_vote(user.id, x)
        data.add_vote(user.id, w)
        cycle1 = _close(data, c1)
        watched = data.get_movie(w)
        watched.cycle_watched = cycle1
        data.update_movie(watched)

        for _ in range(2):
            _close(data, data.add_cycle())
        c4 = data.add_cycle()
        y = _movie(data, "Y")
        data.add_vote(user.id, y)
        _close(data, c4)
        data.add_cycle()

        data.decay_votes(2)
        remaining = {v.movie_id for v in data.get_votes(user.id)}
        assert remaining == {w, y}

    def test_decay_with_large_age_is_noop(self, data):
        user = User(name="alice")
        data.add_user(user)
        data.add_cycle()
        movie_id = _movie(data, "Solaris")
        data.add_vote(user.id, movie_id)
        data.decay_votes(5)
        assert data.user_voted_for_movie(user.id, movie_id)


class TestUsers:
    def test_names_are_unique_case_insensitively(self, data):
        data.add_user(User(name="Alice"))
        assert data.check_user_exists("alice")
        with pytest.raises(ConflictError):
            data.add_user(User(name="ALICE"))

    def test_deleted_name_may_repeat(self, data):
        data.add_user(User(name=DELETED_USER_NAME))
        data.add_user(User(name=DELETED_USER_NAME))
        assert len(data.get_users(0, 10)) == 2

    def test_get_users_windows_by_id(self, data):
        for name in ("ann", "bob", "cat", "dan"):
            data.add_user(User(name=name))
        assert [u.name for u in data.get_users(1, 2)] == ["bob", "cat"]
        assert data.get_users(-3, 1)[0].name == "ann"

    def test_local_login(self, data):
        data.add_user(User(name="Alice", auth_methods=[AuthMethod(type=AuthType.LOCAL, password="H")]))
        assert data.user_local_login("alice", "H").name == "Alice"
        with pytest.raises(UnauthorizedError):
            data.user_local_login("alice", "wrong")
        with pytest.raises(UnauthorizedError):
            data.user_local_login("nobody", "H")

    def test_oauth_login_and_usage(self, data):
        method = AuthMethod(type=AuthType.DISCORD, ext_id="d-1", access_token="tok")
        data.add_user(User(name="alice", auth_methods=[method]))
        assert data.user_discord_login("d-1").name == "alice"
        assert data.user_login(AuthType.DISCORD, "d-1").name == "alice"
        assert data.check_oauth_usage("d-1", AuthType.DISCORD)
        assert not data.check_oauth_usage("d-1", AuthType.TWITCH)
        with pytest.raises(NotFoundError):
            data.user_twitch_login("d-1")

    def test_ext_id_unique_per_provider(self, data):
        data.add_user(User(name="alice", auth_methods=[AuthMethod(type=AuthType.TWITCH, ext_id="t-1")]))
        with pytest.raises(ConflictError):
            data.add_user(User(name="bob", auth_methods=[AuthMethod(type=AuthType.TWITCH, ext_id="t-1")]))
        with pytest.raises(ConflictError):
            data.add_auth_method(AuthMethod(type=AuthType.TWITCH, ext_id="t-1"))

    def test_update_auth_method(self, data):
        method = AuthMethod(type=AuthType.LOCAL, password="old", date=utc_now())
        user = User(name="alice", auth_methods=[method])
        data.add_user(user)
        stored = data.get_user(user.id).get_auth_method(AuthType.LOCAL)
        stored.password = "new"
        stored.date = stored.date + timedelta(seconds=5)
        data.update_auth_method(stored)
        reloaded = data.get_auth_method(stored.id)
        assert reloaded.password == "new"
        assert reloaded.date == stored.date
        with pytest.raises(NotFoundError):
            data.update_auth_method(AuthMethod(id=999, type=AuthType.LOCAL))

    def test_update_user_upserts_and_detaches_methods(self, data):
        user = User(id=12, name="carol", auth_methods=[
            AuthMethod(type=AuthType.LOCAL, password="H"),
            AuthMethod(type=AuthType.DISCORD, ext_id="d-9"),
        ])
        data.update_user(user)
        stored = data.get_user(12)
        assert {m.type for m in stored.auth_methods} == {AuthType.LOCAL, AuthType.DISCORD}

        stored.auth_methods = [m for m in stored.auth_methods if m.type == AuthType.LOCAL]
        data.update_user(stored)
        assert [m.type for m in data.get_user(12).auth_methods] == [AuthType.LOCAL]

    def test_users_with_auth(self, data):
        data.add_user(User(name="local", auth_methods=[AuthMethod(type=AuthType.LOCAL, password="x")]))
        data.add_user(User(name="both", auth_methods=[
            AuthMethod(type=AuthType.LOCAL, password="y"),
            AuthMethod(type=AuthType.PATREON, ext_id="p-1"),
        ]))
        assert [u.name for u in data.get_users_with_auth(AuthType.LOCAL, False)] == ["local", "both"]
        assert [u.name for u in data.get_users_with_auth(AuthType.LOCAL, True)] == ["local"]
        with pytest.raises(NotFoundError):
            data.get_users_with_auth(AuthType.TWITCH, False)

    def test_purge_user_removes_votes_and_methods(self, data):
        data.add_cycle()
        user = User(name="alice", auth_methods=[AuthMethod(type=AuthType.LOCAL, password="H")])
        data.add_user(user)
        auth_id = user.auth_methods[0].id
        movie_id = _movie(data, "Rashomon")
        data.add_vote(user.id, movie_id)

        data.purge_user(user.id)
        with pytest.raises(NotFoundError):
            data.get_user(user.id)
        assert data.get_auth_method(auth_id) is None
        assert data.get_movie(movie_id).votes == []
        with pytest.raises(NotFoundError):
            data.purge_user(user.id)


class TestConfig:
    def test_typed_round_trip(self, data):
        data.set_cfg_string("HostAddress", "polls.example.org")
        data.set_cfg_int("MaxUserVotes", 3)
        data.set_cfg_bool("VotingEnabled", True)
        assert data.get_cfg_string("HostAddress", "") == "polls.example.org"
        assert data.get_cfg_int("MaxUserVotes", 0) == 3
        assert data.get_cfg_bool("VotingEnabled", False) is True

    def test_delete_key(self, data):
        from error_handler import NoValueError

        data.set_cfg_string("CycleEnding", "4")
        data.delete_cfg_key("CycleEnding")
        with pytest.raises(NoValueError) as exc:
            data.get_cfg_string("CycleEnding", "fallback")
        assert exc.value.default == "fallback"


def test_cycle_close_scenario(data):
    """Votes for a watched winner are retained for history."""
    cycle_id = data.add_cycle()
    voters = []
    for name in ("ann", "bob", "cat"):
        user = User(name=name)
        data.add_user(user)
        voters.append(user)
    movie_id = _movie(data, "M")
    for user in voters:
        data.add_vote(user.id, movie_id)

    cycle = _close(data, cycle_id)
    movie = data.get_movie(movie_id)
    movie.cycle_watched = cycle
    data.update_movie(movie)

    assert data.get_movie(movie_id).cycle_watched.id == cycle_id
    assert data.get_active_movies() == []
    assert data.get_movie(movie_id).vote_count == 3
    assert [m.id for m in data.get_movies_from_cycle(cycle_id)] == [movie_id]
    assert [m.id for m in data.get_past_cycles(0, 1)[0].watched] == [movie_id]
