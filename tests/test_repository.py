import pytest

from storyloom.engine.turns import advance_turn
from storyloom.errors import GameBusyError, GameNotFoundError, InvalidChoiceError
from storyloom.models.game import ContextConfig, EndingSummary, GameStatus
from storyloom.models.generation import ParsedOption


async def test_create_and_get_game(repo):
    game = await repo.create_game("u1", "horror", total_turns=5)
    assert game.id
    assert game.title == "Horror Adventure"
    assert game.turn_count == 0
    assert game.status == GameStatus.ACTIVE

    loaded = await repo.get_game_by_id(game.id, "u1")
    assert loaded.total_turns == 5


async def test_games_are_scoped_to_their_owner(repo):
    game = await repo.create_game("u1", "fantasy")
    with pytest.raises(GameNotFoundError):
        await repo.get_game_by_id(game.id, "someone-else")
    with pytest.raises(GameNotFoundError):
        await repo.get_game_by_id(9999)


async def test_list_games_filters_and_paginates(repo):
    for genre in ("a", "b", "c"):
        await repo.create_game("u1", genre)
    other = await repo.create_game("u2", "d")
    done = await repo.create_game("u1", "e", total_turns=1)
    await repo.commit_turn(
        done.id, done.version, advance_turn(0, 1, GameStatus.ACTIVE, False),
        sequence_number=1, title="End", content="Fin.", user_choice=None, options=[],
    )

    games, total = await repo.list_games("u1", page=1, limit=2)
    assert total == 4
    assert len(games) == 2
    assert all(g.user_id == "u1" for g in games)
    assert other.id not in [g.id for g in games]

    completed, total = await repo.list_games("u1", status=GameStatus.COMPLETED)
    assert total == 1
    assert completed[0].id == done.id


async def test_commit_turn_is_atomic_and_versioned(repo):
    game = await repo.create_game("u1", "horror", total_turns=3)
    outcome = advance_turn(game.turn_count, game.total_turns, game.status, False)
    game2, segment = await repo.commit_turn(
        game.id, game.version, outcome,
        sequence_number=1, title="One", content="Start.", user_choice=None,
        options=[ParsedOption(text="Left"), ParsedOption(text="Right", risk="HIGH")],
    )
    assert game2.turn_count == 1
    assert game2.version == game.version + 1
    assert segment.sequence_number == 1
    assert [o.text for o in segment.options] == ["Left", "Right"]
    assert segment.options[1].risk == "HIGH"

    # a stale version means somebody else advanced the game: nothing is written
    with pytest.raises(GameBusyError):
        await repo.commit_turn(
            game.id, game.version, outcome,
            sequence_number=2, title="Dup", content="Dup.", user_choice="Left", options=[],
        )
    assert (await repo.get_game_by_id(game.id)).turn_count == 1
    assert len(await repo.get_segments(game.id)) == 1


async def test_commit_turn_marks_the_previous_choice(repo):
    game = await repo.create_game("u1", "horror")
    outcome = advance_turn(0, game.total_turns, game.status, False)
    game, first = await repo.commit_turn(
        game.id, game.version, outcome,
        sequence_number=1, title="One", content="Start.", user_choice=None,
        options=[ParsedOption(text="Left"), ParsedOption(text="Right")],
    )
    right = first.options[1]
    outcome = advance_turn(game.turn_count, game.total_turns, game.status, False)
    await repo.commit_turn(
        game.id, game.version, outcome,
        sequence_number=2, title="Two", content="Next.", user_choice=right.text,
        options=[ParsedOption(text="On")],
        chosen_option_id=right.id, chosen_segment_id=first.id,
    )
    segments = await repo.get_segments(game.id)
    assert [s.sequence_number for s in segments] == [1, 2]
    assert segments[0].chosen_option.id == right.id
    assert segments[1].user_choice == "Right"


async def test_mark_option_chosen_is_set_once(repo):
    game = await repo.create_game("u1", "horror")
    segment = await repo.create_segment(
        game.id, 1, "One", "Start.", options=[ParsedOption(text="A"), ParsedOption(text="B")]
    )
    a, b = segment.options
    chosen = await repo.mark_option_chosen(segment.id, a.id, "u1")
    assert chosen.was_chosen
    again = await repo.mark_option_chosen(segment.id, a.id, "u1")
    assert again.was_chosen
    with pytest.raises(InvalidChoiceError):
        await repo.mark_option_chosen(segment.id, b.id, "u1")
    with pytest.raises(InvalidChoiceError):
        await repo.mark_option_chosen(segment.id, 12345, "u1")
    with pytest.raises(GameNotFoundError):
        await repo.mark_option_chosen(segment.id, a.id, "intruder")


async def test_initial_story_title_and_summary(repo):
    game = await repo.create_game("u1", "sci-fi", title="Untitled")
    await repo.set_initial_story(game.id, "Once upon a time.")
    await repo.set_title(game.id, "The Signal")
    game = await repo.set_summary(
        game.id, EndingSummary(title="Over", content="It ended.", key_moments=["x"], theme="Hope")
    )
    assert game.initial_story == "Once upon a time."
    assert game.title == "The Signal"
    assert game.summary == "It ended."
    assert game.ending_summary.key_moments == ["x"]


async def test_delete_game_removes_segments(repo):
    game = await repo.create_game("u1", "horror")
    await repo.create_segment(game.id, 1, "One", "Start.", options=[ParsedOption(text="A")])
    await repo.delete_game(game.id, "u1")
    with pytest.raises(GameNotFoundError):
        await repo.get_game_by_id(game.id)
    assert await repo.get_segments(game.id) == []


async def test_context_config_defaults_and_upsert(repo):
    default = await repo.get_context_config("u1")
    assert default.max_segments == 16
    assert default.max_tokens == 6000

    await repo.set_context_config("u1", ContextConfig(max_segments=4, max_tokens=900))
    await repo.set_context_config("u1", ContextConfig(max_segments=5, max_tokens=900))
    assert (await repo.get_context_config("u1")).max_segments == 5
    assert (await repo.get_context_config("u2")).max_segments == 16
