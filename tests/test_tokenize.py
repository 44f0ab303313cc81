from core.tokenize import NOISE_BIGRAMS, cjk_chars, has_cjk, tokenize, tokenize_stream


def test_possessive_particle_bigrams_are_not_emitted():
    tokens = tokenize("旺柴的合約")
    assert "旺柴的合約" in tokens
    assert "旺柴" in tokens
    assert "合約" in tokens
    assert "的合" not in tokens
    assert "柴的" not in tokens


def test_short_runs_are_kept_whole_without_bigrams():
    assert tokenize("以太坊") == ["以太坊"]
    assert tokenize("中文") == ["中文", "中", "文"]


def test_latin_words_are_lowercased_and_filtered():
    assert tokenize("How does NYLAGo work?") == ["nylago", "work"]
    assert tokenize("a I x") == []


def test_ticker_and_handle_prefixes_are_stripped():
    assert tokenize("$NYLA price from @AgentNyla") == ["nyla", "price", "agentnyla"]


def test_addresses_stay_whole():
    addr = "0x1f9840a85d5aF5bf1D1762F925BDADdC4201F984"
    assert tokenize(f"contract: {addr}.") == ["contract", addr.lower()]


def test_mixed_script():
    tokens = tokenize("NYLA 的价格是多少")
    assert tokens[0] == "nyla"
    assert "的价格是多少" in tokens
    assert "价格" in tokens


def test_stream_keeps_repeats():
    assert tokenize_stream("swap swap SWAP") == ["swap", "swap", "swap"]
    assert tokenize("swap swap SWAP") == ["swap"]


def test_helpers():
    assert has_cjk("abc 中")
    assert not has_cjk("abc")
    assert cjk_chars("a旺b柴") == ["旺", "柴"]
    assert "的合" in NOISE_BIGRAMS
