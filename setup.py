"""
Setup script for fluency-core.

fluency-core is the practice engine behind an audio-first language
course. It covers three concerns:

1. Scheduling - Triple Helix thread interleaving with Fibonacci re-surfacing
2. Assembly - Expanding a learning unit into a duplicate-free practice round
3. Adaptation - Pacing and selection driven by the learner's own baseline

The 'fluency-sim' command runs synthetic learners for development.
"""

from setuptools import find_packages, setup

setup(
    name="fluency-core",
    version="0.1.0",
    description="Adaptive language-practice engine: scheduling, round assembly and pacing",
    long_description=open("README.md", encoding="utf-8").read() if __import__("os").path.exists("README.md") else "",
    long_description_content_type="text/markdown",
    author="Fluency",
    packages=find_packages(exclude=["tests", "tests.*"]),
    py_modules=["config"],
    python_requires=">=3.10",
    install_requires=[
        # CLI
        "typer>=0.9.0",
        "rich>=13.0.0",
        # Config & Validation
        "pydantic>=2.0.0",
        "pydantic-settings>=2.0.0",
        # Logging
        "loguru>=0.7.0",
    ],
    extras_require={
        "dev": [
            "pytest>=7.0.0",
            "pytest-asyncio>=0.21.0",
            "pytest-cov>=4.0.0",
            "ruff>=0.1.0",
            "mypy>=1.0.0",
        ],
    },
    entry_points={
        "console_scripts": [
            "fluency-sim=fluency.cli:main",
        ],
    },
    classifiers=[
        "Development Status :: 3 - Alpha",
        "Intended Audience :: Developers",
        "Intended Audience :: Education",
        "License :: OSI Approved :: MIT License",
        "Operating System :: OS Independent",
        "Programming Language :: Python :: 3",
        "Programming Language :: Python :: 3.10",
        "Programming Language :: Python :: 3.11",
        "Programming Language :: Python :: 3.12",
        "Topic :: Education",
        "Topic :: Education :: Computer Aided Instruction (CAI)",
    ],
    keywords="language-learning spaced-repetition adaptive audio education",
)
