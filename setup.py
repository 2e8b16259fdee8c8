from setuptools import setup, find_packages

setup(
    name="platformq-wasm-udf",
    version="0.1.0",
    packages=find_packages(where="src"),
    package_dir={"": "src"},
    install_requires=[
        "wasmtime>=20.0.0",
        "pydantic>=2.0.0",
        "pydantic-settings>=2.0.0",
        "prometheus-client>=0.15.0",
        "cachetools>=5.2.0",
    ],
    extras_require={
        "sql": [
            "duckdb>=1.0.0",
            "numpy",
        ],
        "test": [
            "pytest>=7.0.0",
            "duckdb>=1.0.0",
            "numpy",
        ],
    },
    python_requires=">=3.8",
    description="WebAssembly scalar user-defined functions for PlatformQ query engines",
    author="PlatformQ Team",
)
