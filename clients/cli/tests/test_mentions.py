from meshchat.mentions import is_mention


def test_mention_found_anywhere_in_text():
    assert is_mention("hi @bob", "bob")
    assert is_mention("@bob: ping", "bob")


def test_other_alias_is_not_a_mention():
    assert not is_mention("hi @alice", "bob")
    assert not is_mention("hi bob", "bob")


def test_alias_prefix_still_matches():
    # substring matching: @bobby mentions bob as well
    assert is_mention("hi @bobby", "bob")


def test_empty_inputs():
    assert not is_mention("", "bob")
    assert not is_mention("hi @", "")
    assert not is_mention("hi @bob", "")
