import pytest

from core.config import RetrievalConfig
from services.retrieval.intents import IntentDetector, IntentType, SignalType

ADDR = "0x1f9840a85d5aF5bf1D1762F925BDADdC4201F984"


@pytest.fixture
def detector():
    return IntentDetector()


def test_ticker_with_price_context_is_lexical_heavy(detector):
    analysis = detector.analyze("What is the $NYLA price today?")
    assert IntentType.TICKER_SYMBOL.value in analysis.intent_types
    assert [s.type for s in analysis.signals] == [SignalType.TICKER]
    assert analysis.weights.lexical >= 0.75
    assert analysis.weights.dense >= 0.2


def test_conceptual_query_uses_base_weight(detector):
    analysis = detector.analyze("how does proof of stake work")
    assert analysis.intents == []
    assert analysis.signals == []
    assert analysis.weights.lexical == pytest.approx(0.3)
    assert analysis.weights.dense == pytest.approx(0.7)
    assert analysis.weights.reason == "base"


def test_address_signals_contract_intent(detector):
    analysis = detector.analyze(f"is {ADDR} legit?")
    assert analysis.intent_types == ["contract_address"]
    assert analysis.signals[0].type is SignalType.ETH_ADDRESS
    assert analysis.weights.lexical == pytest.approx(0.8)
    assert analysis.weights.dense == pytest.approx(0.2)


def test_chinese_contract_keyword(detector):
    intents = detector.detect_intents("旺柴的合約地址是什麼")
    assert [i.type for i in intents] == [IntentType.CONTRACT_ADDRESS]


def test_short_keywords_need_word_boundaries(detector):
    # "ca" inside "became", "eth" inside "method", "rate" inside "separate"
    assert detector.detect_intents("the method became separate") == []
    assert detector.detect_intents("what is the CA") != []


def test_token_name_with_price_word(detector):
    intents = detector.detect_intents("SOL price right now")
    assert [i.type for i in intents] == [IntentType.TICKER_SYMBOL]
    assert intents[0].keywords == ("sol",)


def test_intent_weights(detector):
    official = detector.analyze("where is the official telegram")
    assert official.weights.lexical == pytest.approx(0.65)
    technical = detector.analyze("technical specs of the bridge")
    assert technical.weights.lexical == pytest.approx(0.45)


def test_strongest_intent_wins(detector):
    analysis = detector.analyze("official contract")
    assert set(analysis.intent_types) == {"contract_address", "official_channel"}
    assert analysis.weights.lexical == pytest.approx(0.8)


def test_signals_boost_by_step_and_cap():
    detector = IntentDetector(RetrievalConfig(max_lexical_weight=0.8))
    one = detector.analyze("ask @AgentNyla")
    assert one.weights.lexical == pytest.approx(0.4)
    many = detector.analyze("@a @b @c @d @e @f")
    assert many.weights.lexical == pytest.approx(0.8)
    assert many.weights.dense == pytest.approx(0.2)


def test_exact_signal_patterns(detector):
    tx = "0x" + "ab" * 32
    sol = "7xKXtg2CW87d97TXJSDpbD5jBkheTqA83TZRuJosgAsU"
    kinds = {s.type: s.value for s in detector.detect_signals(f"tx {tx} wallet {sol} send 2.5 SOL to @shax_btc for $BONK")}
    assert kinds[SignalType.TX_HASH] == tx
    assert kinds[SignalType.SOLANA_ADDRESS] == sol
    assert kinds[SignalType.NUMBER_UNIT] == "2.5 SOL"
    assert kinds[SignalType.HANDLE] == "shax_btc"
    assert kinds[SignalType.TICKER] == "BONK"
    assert SignalType.ETH_ADDRESS not in kinds


def test_long_plain_word_is_not_a_solana_address(detector):
    word = "Pneumonoultramicroscopicsilicovolcanoconiosis"
    assert detector.detect_signals(word) == []


def test_custom_keyword_tables():
    detector = IntentDetector(keywords={"official": ["linktree"]})
    assert [i.type for i in detector.detect_intents("project linktree")] == [IntentType.OFFICIAL_CHANNEL]
    assert detector.detect_intents("official site") == []
