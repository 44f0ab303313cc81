import copy
import hashlib
import pytest
import sys
from pathlib import Path

# Add project root to sys.path
ROOT_DIR = Path(__file__).parents[1]
sys.path.insert(0, str(ROOT_DIR))

from app_unified import create_app
from core.config import RetrievalConfig
from core.tokenize import tokenize_stream
from services.retrieval import CollectionManager, HybridRetriever, build_snapshot

CONTRACT = "0x1f9840a85d5aF5bf1D1762F925BDADdC4201F984"

SEND_BODY = (
    "NYLAGo lets you send tokens to someone on X just by posting a tweet that mentions "
    "the assistant. The bot reads the command, checks the sender wallet and transfers "
    "the amount on Solana within a few seconds. Fees are paid in SOL and the receiver "
    "can claim the tokens later from the web app without installing anything."
)


class FakeEmbedder:
    """Deterministic bag-of-tokens embedder (hashing trick)."""

    dim = 256

    def __init__(self):
        self.calls = 0

    def embed(self, text):
        self.calls += 1
        vec = [0.0] * self.dim
        for tok in tokenize_stream(text):
            h = int(hashlib.md5(tok.encode("utf-8")).hexdigest(), 16)
            vec[h % self.dim] += 1.0
        return vec

    def embed_batch(self, texts):
        return [self.embed(t) for t in texts]


class FailingEmbedder:
    def embed(self, text):
        raise RuntimeError("embedding service unavailable")

    def embed_batch(self, texts):
        raise RuntimeError("embedding service unavailable")


def make_chunk(**overrides):
    raw = {
        "id": "chunk-1",
        "source_id": "src-1",
        "type": "facts",
        "lang": "en",
        "tags": ["nylago", "payments"],
        "stability": "stable",
        "title": "Sending tokens with NYLAGo",
        "body": SEND_BODY,
        "summary_en": "Send tokens to an X handle by tweeting a command.",
        "summary_zh": "通过发推文向 X 用户发送代币。",
    }
    raw.update(overrides)
    return raw


CORPUS = [
    make_chunk(id="A", source_id="guide-send", section="howto", score=0.9),
    # B 与 A 只差一个词
    make_chunk(
        id="B", source_id="faq-send",
        body=SEND_BODY.replace("within a few seconds", "within several seconds"),
    ),
    make_chunk(
        id="C", source_id="token-facts", title="NYLA token contract",
        tags=["nyla", "contract"],
        body=(
            f"The official NYLA token contract address is {CONTRACT}. Always verify the "
            "address before trading and never send funds to addresses shared in private messages."
        ),
        summary_en="Official contract address of the NYLA token.",
        summary_zh="NYLA 代币的官方合约地址。",
        meta_card={"contract_address": CONTRACT, "ticker_symbol": "$NYLA", "blockchain": "Ethereum"},
    ),
    make_chunk(
        id="D", source_id="community-zh", lang="zh", type="ecosystem", tags=["wangchai", "community"],
        title="旺柴社区介绍",
        body="旺柴是 Solana 链上的社区项目，社区成员通过推特和电报组织活动，定期举办问答和线上分享。",
        summary_en="Introduction to the WangChai community on Solana.",
        summary_zh="旺柴社区简介。",
    ),
    make_chunk(
        id="E", source_id="policy-channels", type="policy", tags=["official", "security"],
        title="Official channels",
        body=(
            "The only official channels are the verified X account, the Telegram group linked "
            "from the website and the Discord server. Moderators will never ask for seed phrases."
        ),
        summary_en="List of official community channels.",
        summary_zh="官方渠道列表。",
    ),
]


@pytest.fixture
def corpus():
    return copy.deepcopy(CORPUS)


@pytest.fixture
def config():
    return RetrievalConfig()


@pytest.fixture
def fake_embedder():
    return FakeEmbedder()


@pytest.fixture
def snapshot(corpus, fake_embedder, config):
    return build_snapshot(corpus, embedder=fake_embedder, config=config)


@pytest.fixture
def retriever(snapshot, fake_embedder):
    return HybridRetriever.from_snapshot(snapshot, embedder=fake_embedder)


@pytest.fixture
def manager(tmp_path, fake_embedder):
    return CollectionManager(
        config={"collections": {"default": str(tmp_path / "default")}},
        embedder=fake_embedder,
    )


@pytest.fixture
def app(manager):
    app = create_app(manager)
    app.config['TESTING'] = True
    return app


@pytest.fixture
def client(app):
    return app.test_client()


@pytest.fixture
def runner(app):
    return app.test_cli_runner()
