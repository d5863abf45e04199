"""Shared test fixtures for SpecGraph."""

from __future__ import annotations

import hashlib
from pathlib import Path

import pytest

from specgraph.chunking.diff_parser import chunk_diff
from specgraph.chunking.spec_chunker import chunk_specs
from specgraph.embeddings.base import Embedder
from specgraph.graph.memory_store import MemoryGraphRepository
from specgraph.models import SpecChunk, SpecFile
from specgraph.search.lexical import tokenize

CHECKOUT_SPEC = """import { test, expect } from '@playwright/test'

test.describe('checkout', () => {
  test('checkout button submits payment', async ({ page }) => {
    await page.goto('/checkout')
    await page.getByTestId('checkout-btn').click()
    await expect(page.getByText('Pago confirmado')).toBeVisible()
  })

  test('shows cart total', async ({ page }) => {
    await page.goto('/cart')
    await expect(page.getByTestId('cart-total')).toHaveText('$10')
  })
})
"""

LOGIN_SPEC = """import { test } from '@playwright/test'

test('login with valid credentials', async ({ page }) => {
  await page.goto('/login')
  await page.fill('[data-test-id="email"]', 'ana@example.com')
  await page.click('[data-test-id="login-submit"]')
})
"""

CHECKOUT_DIFF = """diff --git a/src/components/Checkout.tsx b/src/components/Checkout.tsx
index 1111111..2222222 100644
--- a/src/components/Checkout.tsx
+++ b/src/components/Checkout.tsx
@@ -10,7 +10,7 @@ export function Checkout() {
   return (
     <form onSubmit={handleSubmit}>
-      <Button data-test-id="pay-btn" onClick={pay}>Pay</Button>
+      <Button data-test-id="checkout-btn" onClick={pay}>Pay</Button>
     </form>
   )
 }
diff --git a/src/components/Login.tsx b/src/components/Login.tsx
index 5555555..6666666 100644
--- a/src/components/Login.tsx
+++ b/src/components/Login.tsx
@@ -4,6 +4,7 @@ export const Login = () => {
   return (
     <form>
       <input data-test-id="email" />
+      <input data-test-id="password" type="password" />
       <button data-test-id="login-submit">Sign in</button>
     </form>
   )
diff --git a/README.md b/README.md
index 3333333..4444444 100644
--- a/README.md
+++ b/README.md
@@ -1,1 +1,2 @@
 # Shop
+More docs
"""


class FakeEmbedder(Embedder):
    """Deterministic bag-of-words vectors; shared words mean higher cosine."""

    def __init__(self, dimensions: int = 128) -> None:
        super().__init__(model="fake-embed")
        self.dimensions = dimensions
        self.batches: list[list[str]] = []

    def _vector(self, text: str) -> list[float]:
        vector = [0.0] * self.dimensions
        for token in tokenize(text):
            bucket = int(hashlib.md5(token.encode()).hexdigest(), 16) % self.dimensions
            vector[bucket] += 1.0
        return vector

    async def embed(self, text: str) -> list[float]:
        return self._vector(text)

    async def embed_batch(self, texts: list[str]) -> list[list[float]]:
        self.batches.append(list(texts))
        return [self._vector(t) for t in texts]


# -- fake neo4j async driver ---------------------------------------------------


class FakeResult:
    def __init__(self, record: dict | None) -> None:
        self._record = record

    async def consume(self) -> None:
        return None

    async def single(self) -> dict | None:
        return self._record


class FakeTransaction:
    def __init__(self, driver: FakeDriver) -> None:
        self.driver = driver

    async def run(self, query: str, parameters: dict | None = None) -> FakeResult:
        self.driver.calls.append((query, dict(parameters or {})))
        if self.driver.error is not None:
            raise self.driver.error
        if "RETURN" in query and not self.driver.missing_endpoints:
            return FakeResult({"rel": "ok"})
        return FakeResult(None)


class FakeSession:
    def __init__(self, driver: FakeDriver, database: str | None) -> None:
        self.driver = driver
        self.database = database

    async def __aenter__(self) -> FakeSession:
        self.driver.sessions.append(self.database)
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        return None

    async def execute_write(self, work, *args):
        self.driver.transactions += 1
        return await work(FakeTransaction(self.driver), *args)

    async def run(self, query: str, parameters: dict | None = None) -> FakeResult:
        return await FakeTransaction(self.driver).run(query, parameters)


class FakeDriver:
    """Records every Cypher statement and its parameters."""

    def __init__(self) -> None:
        self.calls: list[tuple[str, dict]] = []
        self.sessions: list[str | None] = []
        self.transactions = 0
        self.error: Exception | None = None
        self.connectivity_error: Exception | None = None
        self.missing_endpoints = False
        self.closed = False

    def session(self, database: str | None = None) -> FakeSession:
        return FakeSession(self, database)

    async def verify_connectivity(self) -> None:
        if self.connectivity_error is not None:
            raise self.connectivity_error

    async def close(self) -> None:
        self.closed = True


# -- fixtures ------------------------------------------------------------------


@pytest.fixture
def spec_files() -> list[SpecFile]:
    return [
        SpecFile(name="checkout.spec.ts", content=CHECKOUT_SPEC),
        SpecFile(name="login.spec.ts", content=LOGIN_SPEC),
    ]


@pytest.fixture
def spec_chunks(spec_files: list[SpecFile]) -> list[SpecChunk]:
    return chunk_specs(spec_files)


@pytest.fixture
def checkout_diff() -> str:
    return CHECKOUT_DIFF


@pytest.fixture
def code_chunks(checkout_diff: str):
    return chunk_diff(checkout_diff)


@pytest.fixture
def fake_embedder() -> FakeEmbedder:
    return FakeEmbedder()


@pytest.fixture
def fake_driver() -> FakeDriver:
    return FakeDriver()


@pytest.fixture
def memory_repo() -> MemoryGraphRepository:
    return MemoryGraphRepository()


@pytest.fixture
def spec_dir(tmp_path: Path) -> Path:
    """A directory of spec files, including one that must be skipped."""
    specs = tmp_path / "e2e"
    (specs / "flows").mkdir(parents=True)
    (specs / "checkout.spec.ts").write_text(CHECKOUT_SPEC)
    (specs / "flows" / "login.spec.ts").write_text(LOGIN_SPEC)
    (specs / "helpers.ts").write_text("export const BASE = '/'\n")
    (specs / "node_modules").mkdir()
    (specs / "node_modules" / "vendor.spec.ts").write_text("test('vendored', () => {})\n")
    return specs
