"""Scrape configuration for VictoriaMetrics.

``ConfigBuilder`` collects the ``host:port`` endpoints of every cluster
component that has to be scraped and renders them through the bundled
``VictoriaMetrics.yml.tpl`` template.
"""

from pathlib import Path

from pydantic import BaseModel, ConfigDict, Field

from vmetrics_deploy.embed import AssetReader, default_assets
from vmetrics_deploy.paths import get_config_template_path
from vmetrics_deploy.sink import write_file
from vmetrics_deploy.template.engine import render_template
from vmetrics_deploy.types import Address
from vmetrics_deploy.utils.log import get_logger

logger = get_logger(__name__)

TEMPLATE_NAME = "VictoriaMetrics"


class ConfigData(BaseModel):
    """Values exposed to the scrape configuration template.

    Field aliases are the names the template refers to, e.g. ``.PDAddrs``.
    """

    model_config = ConfigDict(populate_by_name=True)

    cluster_name: str = Field(alias="ClusterName")
    tls_enabled: bool = Field(alias="TLSEnabled")
    kafka_addrs: list[str] = Field(default_factory=list, alias="KafkaAddrs")
    node_exporter_addrs: list[str] = Field(default_factory=list, alias="NodeExporterAddrs")
    tidb_status_addrs: list[str] = Field(default_factory=list, alias="TiDBStatusAddrs")
    tikv_status_addrs: list[str] = Field(default_factory=list, alias="TiKVStatusAddrs")
    pd_addrs: list[str] = Field(default_factory=list, alias="PDAddrs")
    tiflash_status_addrs: list[str] = Field(default_factory=list, alias="TiFlashStatusAddrs")
    tiflash_learner_status_addrs: list[str] = Field(
        default_factory=list, alias="TiFlashLearnerStatusAddrs"
    )
    pump_addrs: list[str] = Field(default_factory=list, alias="PumpAddrs")
    drainer_addrs: list[str] = Field(default_factory=list, alias="DrainerAddrs")
    cdc_addrs: list[str] = Field(default_factory=list, alias="CDCAddrs")
    zookeeper_addrs: list[str] = Field(default_factory=list, alias="ZookeeperAddrs")
    blackbox_exporter_addrs: list[str] = Field(default_factory=list, alias="BlackboxExporterAddrs")
    lightning_addrs: list[str] = Field(default_factory=list, alias="LightningAddrs")
    monitored_servers: list[str] = Field(default_factory=list, alias="MonitoredServers")
    alertmanager_addrs: list[str] = Field(default_factory=list, alias="AlertmanagerAddrs")
    dm_master_addrs: list[str] = Field(default_factory=list, alias="DMMasterAddrs")
    dm_worker_addrs: list[str] = Field(default_factory=list, alias="DMWorkerAddrs")
    pushgateway_addr: str = Field(default="", alias="PushgatewayAddr")
    blackbox_addr: str = Field(default="", alias="BlackboxAddr")
    kafka_exporter_addr: str = Field(default="", alias="KafkaExporterAddr")
    grafana_addr: str = Field(default="", alias="GrafanaAddr")


class ConfigBuilder:
    def __init__(
        self,
        cluster_name: str,
        tls_enabled: bool,
        *,
        assets: AssetReader | None = None,
    ) -> None:
        self.data = ConfigData(cluster_name=cluster_name, tls_enabled=tls_enabled)
        self._assets = default_assets() if assets is None else assets

    def __repr__(self) -> str:
        return f"<ConfigBuilder cluster={self.data.cluster_name} tls={self.data.tls_enabled}>"

    def _append(self, addrs: list[str], host: str, port: int) -> "ConfigBuilder":
        addrs.append(str(Address(host, port)))
        return self

    def add_kafka(self, host: str, port: int) -> "ConfigBuilder":
        return self._append(self.data.kafka_addrs, host, port)

    def add_node_exporter(self, host: str, port: int) -> "ConfigBuilder":
        return self._append(self.data.node_exporter_addrs, host, port)

    def add_tidb(self, host: str, port: int) -> "ConfigBuilder":
        return self._append(self.data.tidb_status_addrs, host, port)

    def add_tikv(self, host: str, port: int) -> "ConfigBuilder":
        return self._append(self.data.tikv_status_addrs, host, port)

    def add_pd(self, host: str, port: int) -> "ConfigBuilder":
        return self._append(self.data.pd_addrs, host, port)

    def add_tiflash(self, host: str, port: int) -> "ConfigBuilder":
        return self._append(self.data.tiflash_status_addrs, host, port)

    def add_tiflash_learner(self, host: str, port: int) -> "ConfigBuilder":
        return self._append(self.data.tiflash_learner_status_addrs, host, port)

    def add_pump(self, host: str, port: int) -> "ConfigBuilder":
        return self._append(self.data.pump_addrs, host, port)

    def add_drainer(self, host: str, port: int) -> "ConfigBuilder":
        return self._append(self.data.drainer_addrs, host, port)

    def add_cdc(self, host: str, port: int) -> "ConfigBuilder":
        return self._append(self.data.cdc_addrs, host, port)

    def add_zookeeper(self, host: str, port: int) -> "ConfigBuilder":
        return self._append(self.data.zookeeper_addrs, host, port)

    def add_blackbox_exporter(self, host: str, port: int) -> "ConfigBuilder":
        return self._append(self.data.blackbox_exporter_addrs, host, port)

    def add_lightning(self, host: str, port: int) -> "ConfigBuilder":
        return self._append(self.data.lightning_addrs, host, port)

    def add_alertmanager(self, host: str, port: int) -> "ConfigBuilder":
        return self._append(self.data.alertmanager_addrs, host, port)

    def add_dm_master(self, host: str, port: int) -> "ConfigBuilder":
        return self._append(self.data.dm_master_addrs, host, port)

    def add_dm_worker(self, host: str, port: int) -> "ConfigBuilder":
        return self._append(self.data.dm_worker_addrs, host, port)

    def add_monitored_server(self, host: str) -> "ConfigBuilder":
        self.data.monitored_servers.append(host)
        return self

    # Single-address slots: the last call wins.

    def add_pushgateway(self, host: str, port: int) -> "ConfigBuilder":
        self.data.pushgateway_addr = str(Address(host, port))
        return self

    def add_blackbox(self, host: str, port: int) -> "ConfigBuilder":
        self.data.blackbox_addr = str(Address(host, port))
        return self

    def add_kafka_exporter(self, host: str, port: int) -> "ConfigBuilder":
        self.data.kafka_exporter_addr = str(Address(host, port))
        return self

    def add_grafana(self, host: str, port: int) -> "ConfigBuilder":
        self.data.grafana_addr = str(Address(host, port))
        return self

    def render(self) -> bytes:
        """Render the bundled scrape configuration template."""
        template_path = get_config_template_path()
        tpl = self._assets.read(template_path)
        logger.debug(f"Rendering {template_path} for cluster {self.data.cluster_name}")
        return self.render_with_template(tpl.decode(errors="surrogateescape"))

    def render_with_template(self, tpl: str) -> bytes:
        return render_template(TEMPLATE_NAME, tpl, self.data.model_dump(by_alias=True))

    def render_to(self, path: Path | str) -> None:
        write_file(path, self.render())
        logger.debug(f"Wrote scrape config to: {path}")
