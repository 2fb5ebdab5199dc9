"""Wire types exchanged with the ETS language server."""

from __future__ import annotations

from pydantic import BaseModel, ConfigDict, Field

# Method names used by the bridge
INITIALIZE = "initialize"
CONFIGURATION_CHANGED = "ets/waitForEtsConfigurationChangedRequested"
FORMAT_DOCUMENT = "ets/formatDocument"
FORMATTING_METHODS = frozenset({"textDocument/formatting", "textDocument/rangeFormatting"})

# Module-resolution aliases relative to ``baseUrl``
DEFAULT_PATH_ALIASES: dict[str, list[str]] = {
    "*": ["./api/*", "./kits/*", "./arkts/*"],
    "@internal/full/*": ["./api/@internal/full/*"],
}


class EtsModel(BaseModel):
    """Base model for ETS wire types with populate_by_name enabled."""

    model_config = ConfigDict(populate_by_name=True)


class AuxiliarySdkPaths(EtsModel):
    """SDK layout handed to the language server during initialization."""

    sdk_path: str = Field(alias="sdkPath")
    component_path: str = Field(alias="etsComponentPath")
    loader_config_path: str = Field(alias="etsLoaderConfigPath")
    loader_path: str = Field(alias="etsLoaderPath")
    base_url: str = Field(alias="baseUrl")
    libraries: list[str] = Field(default_factory=list, alias="lib")
    path_aliases: dict[str, list[str]] = Field(
        default_factory=lambda: {k: list(v) for k, v in DEFAULT_PATH_ALIASES.items()},
        alias="paths",
    )

    def to_wire(self) -> dict[str, object]:
        """Serialize with the server's field names."""
        return self.model_dump(by_alias=True)


class TypescriptOptions(EtsModel):
    """Minimal ``typescript`` block the server reads from initialization options."""

    tsdk: str


class EtsConfiguration(EtsModel):
    """Params of the configuration request sent right after ``initialize``."""

    typescript: TypescriptOptions | None = None
    ohos: AuxiliarySdkPaths

    def to_wire(self) -> dict[str, object]:
        return self.model_dump(by_alias=True, exclude_none=True)
