from setuptools import setup, find_packages

setup(
    name="paramsync",
    version="0.1.0",
    description="Synchronous data-parallel training with parameter averaging and gradient accumulation",
    author="paramsync developers",
    package_dir={"": "src"},
    packages=find_packages(where="src"),
    python_requires=">=3.9",
    install_requires=[
        "torch>=2.0.0",
        "numpy>=1.24.0",
        "pandas>=2.0.0",
        "pyyaml>=6.0",
    ],
    extras_require={
        "test": ["pytest>=7.0"],
    },
)
