from docbrowser.pagination import CursorTracker


def rows(*ids):
    return [{"id": i} for i in ids]


def walk(tracker, page, data):
    move = tracker.plan(page)
    return move, tracker.commit(move, data)


def test_first_page_has_no_cursor():
    t = CursorTracker(page_size=2)
    move, state = walk(t, 1, rows("a", "b"))
    assert move.direction == "first" and move.cursor is None
    assert state.current_page == 1
    assert state.previous_cursors == []
    assert state.next_cursor == "b"


def test_forward_uses_last_row_of_loaded_page():
    t = CursorTracker(page_size=2)
    walk(t, 1, rows("a", "b"))
    move, state = walk(t, 2, rows("c", "d"))
    assert move.direction == "forward" and move.cursor == "b"
    assert state.previous_cursors == ["b"]
    assert state.next_cursor == "d"


def test_one_two_three_two_reenters_with_same_cursor():
    t = CursorTracker(page_size=2)
    walk(t, 1, rows("a", "b"))
    m2, _ = walk(t, 2, rows("c", "d"))
    m3, s3 = walk(t, 3, rows("e", "f"))
    assert m3.cursor == "d"
    assert s3.previous_cursors == ["b", "d"]

    back, s2 = walk(t, 2, rows("c", "d"))
    assert back.direction == "backward"
    assert back.cursor == m2.cursor == "b"
    assert s2.current_page == 2
    assert s2.previous_cursors == ["b"]
    assert s2.next_cursor == "d"


def test_back_to_first_page_clears_stack():
    t = CursorTracker(page_size=2)
    walk(t, 1, rows("a", "b"))
    walk(t, 2, rows("c", "d"))
    move, state = walk(t, 1, rows("a", "b"))
    assert move.direction == "first" and move.cursor is None
    assert state.previous_cursors == []


def test_stack_length_tracks_current_page():
    t = CursorTracker(page_size=1)
    for page, key in enumerate("abcdef", start=1):
        _, state = walk(t, page, rows(key))
        assert len(state.previous_cursors) == page - 1


def test_jump_ahead_without_history_is_one_forward_step():
    t = CursorTracker(page_size=2)
    walk(t, 1, rows("a", "b"))
    move = t.plan(3)
    assert move.direction == "forward"
    assert move.page == 2
    assert move.cursor == "b"


def test_forward_after_empty_page_reloads_current():
    t = CursorTracker(page_size=2)
    walk(t, 1, rows("a", "b"))
    walk(t, 2, [])
    move = t.plan(3)
    assert move.direction == "reload"
    assert move.page == 2 and move.cursor == "b"


def test_out_of_range_pages_clamp_to_first():
    t = CursorTracker(page_size=2)
    walk(t, 1, rows("a", "b"))
    assert t.plan(0).page == 1
    assert t.plan(-4).direction == "first"
    assert t.entry_cursor(1) is None
    assert t.entry_cursor(3) is None


def test_reset_and_page_count():
    t = CursorTracker(page_size=10)
    walk(t, 1, rows(*range(10)))
    walk(t, 2, rows(*range(10, 20)))
    t.reset(page_size=25)
    state = t.state
    assert state.current_page == 1
    assert state.previous_cursors == []
    assert state.next_cursor is None
    assert t.page_size == 25
    assert t.page_count(51) == 3
    assert t.page_count(None) is None


def test_state_is_a_copy():
    t = CursorTracker(page_size=2)
    walk(t, 1, rows("a", "b"))
    walk(t, 2, rows("c", "d"))
    snapshot = t.state
    snapshot.previous_cursors.append("zzz")
    assert t.state.previous_cursors == ["b"]
