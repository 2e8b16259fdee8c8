from functools import lru_cache
from typing import Optional

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class WasmUdfSettings(BaseSettings):
    # Module store
    store_path: str = ".wasm_store"
    module_suffix: str = ".wasm"
    entry_point: str = "udf_main"

    # Execution engine
    bootstrap_entry_point: str = "_start"
    compile_cache_size: int = Field(128, ge=0)
    fuel_limit: Optional[int] = Field(None, gt=0)
    # Terminate the host when a module calls proc_exit instead of raising
    # ProcessExitSignal to the caller.
    mirror_process_exit: bool = False
    inherit_stdio: bool = False

    model_config = SettingsConfigDict(
        env_prefix="WASM_UDF_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )


@lru_cache()
def get_settings() -> WasmUdfSettings:
    return WasmUdfSettings()
