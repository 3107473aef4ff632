"""Unit tests for ClusterClientRegistry bootstrap."""

from __future__ import annotations

from pathlib import Path

import pytest

from trivyui.cluster.registry import ClusterClientRegistry
from trivyui.errors import KubeconfigError, NoClustersError
from trivyui.models.config import ClusterSourceConfig


class _StubClient:
    def __init__(self, name: str, host: str) -> None:
        self.name = name
        self.host = host
        self.closed = False

    async def close(self) -> None:
        self.closed = True


class _Factory:
    """Names clients from the first line of the file; "bad" files fail."""

    def __init__(self, in_cluster_name: str | None = None) -> None:
        self.in_cluster_name = in_cluster_name
        self.calls: list[str | None] = []
        self.created: list[_StubClient] = []

    async def __call__(self, path: str | None, *, in_cluster: bool | None = None) -> _StubClient:
        self.calls.append(path)
        if path is None:
            if self.in_cluster_name is None:
                raise KubeconfigError("incluster", "service account token missing")
            client = _StubClient(self.in_cluster_name, "https://kubernetes.default.svc")
        else:
            content = Path(path).read_text().strip()
            if content == "bad":
                raise KubeconfigError(path, "unparseable")
            client = _StubClient(content, f"https://{Path(path).name}")
        self.created.append(client)
        return client


@pytest.fixture
def kube_dir(tmp_path: Path) -> Path:
    directory = tmp_path / "kubeconfigs"
    directory.mkdir()
    return directory


def _sources(kube_dir: Path, **overrides: object) -> ClusterSourceConfig:
    values: dict[str, object] = {
        "kubeconfig_dir": str(kube_dir),
        "default_kubeconfig": str(kube_dir.parent / "no-default"),
        "in_cluster": False,
    }
    values.update(overrides)
    return ClusterSourceConfig(**values)  # type: ignore[arg-type]


class TestBootstrap:
    async def test_registers_every_valid_file(self, kube_dir: Path) -> None:
        (kube_dir / "a").write_text("alpha")
        (kube_dir / "b").write_text("beta")
        (kube_dir / "c").write_text("bad")
        factory = _Factory()

        registry = await ClusterClientRegistry.bootstrap(_sources(kube_dir), factory=factory)

        assert registry.names() == ["alpha", "beta"]
        assert len(factory.calls) == 3

    async def test_hidden_files_and_directories_skipped(self, kube_dir: Path) -> None:
        (kube_dir / ".hidden").write_text("ghost")
        (kube_dir / "nested").mkdir()
        (kube_dir / "real").write_text("real")
        factory = _Factory()

        registry = await ClusterClientRegistry.bootstrap(_sources(kube_dir), factory=factory)

        assert registry.names() == ["real"]
        assert factory.calls == [str(kube_dir / "real")]

    async def test_last_registration_wins(self, kube_dir: Path) -> None:
        (kube_dir / "first").write_text("same")
        (kube_dir / "second").write_text("same")

        registry = await ClusterClientRegistry.bootstrap(_sources(kube_dir), factory=_Factory())

        assert len(registry) == 1
        client = registry.get("same")
        assert client is not None
        assert client.host == "https://second"

    async def test_in_cluster_source(self, kube_dir: Path) -> None:
        factory = _Factory(in_cluster_name="incluster")
        registry = await ClusterClientRegistry.bootstrap(_sources(kube_dir, in_cluster=True), factory=factory)
        assert "incluster" in registry
        assert factory.calls == [None]

    async def test_in_cluster_failure_is_skipped(self, kube_dir: Path) -> None:
        (kube_dir / "a").write_text("alpha")
        registry = await ClusterClientRegistry.bootstrap(_sources(kube_dir, in_cluster=True), factory=_Factory())
        assert registry.names() == ["alpha"]

    async def test_default_kubeconfig_used_when_present(self, kube_dir: Path, tmp_path: Path) -> None:
        default = tmp_path / "config"
        default.write_text("laptop")
        registry = await ClusterClientRegistry.bootstrap(
            _sources(kube_dir, default_kubeconfig=str(default)), factory=_Factory()
        )
        assert registry.names() == ["laptop"]

    async def test_missing_directory_is_not_fatal(self, tmp_path: Path) -> None:
        factory = _Factory(in_cluster_name="incluster")
        sources = _sources(tmp_path / "absent", in_cluster=True)
        registry = await ClusterClientRegistry.bootstrap(sources, factory=factory)
        assert registry.names() == ["incluster"]

    async def test_no_clients_raises(self, kube_dir: Path) -> None:
        (kube_dir / "broken").write_text("bad")
        with pytest.raises(NoClustersError):
            await ClusterClientRegistry.bootstrap(_sources(kube_dir), factory=_Factory())


class TestRegistry:
    async def test_set_returns_replaced_client(self) -> None:
        registry = ClusterClientRegistry()
        first = _StubClient("x", "h1")
        second = _StubClient("x", "h2")
        assert registry.set("x", first) is None  # type: ignore[arg-type]
        assert registry.set("x", second) is first  # type: ignore[arg-type]

    async def test_close_closes_all_clients(self, kube_dir: Path) -> None:
        (kube_dir / "a").write_text("alpha")
        (kube_dir / "b").write_text("beta")
        factory = _Factory()
        registry = await ClusterClientRegistry.bootstrap(_sources(kube_dir), factory=factory)

        await registry.close()

        assert all(client.closed for client in factory.created)
        assert len(registry) == 0
