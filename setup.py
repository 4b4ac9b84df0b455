from pathlib import Path
from setuptools import find_packages, setup


ROOT = Path(__file__).parent


def read_version() -> str:
    for line in (ROOT / "solhands" / "__init__.py").read_text().splitlines():
        if line.startswith("__version__"):
            return line.split("=", 1)[1].strip().strip("\"'")
    return "0.0.0"


setup(
    name="solhands",
    version=read_version(),
    description="IDL-driven swap execution across the Pump.fun curve, PumpSwap and Raydium",
    packages=find_packages(include=["solhands", "solhands.*"]),
    python_requires=">=3.10",
    install_requires=[
        "solders>=0.21",
        "solana>=0.34,<0.37",
        "aiohttp>=3.9",
        "pydantic>=2.5",
        "cachetools>=5.3",
        "orjson>=3.9",
    ],
    extras_require={"test": ["pytest>=7"]},
)
