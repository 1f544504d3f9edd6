"""Setup script for the pical recurrence core."""

from pathlib import Path

from setuptools import find_packages, setup

# Read the README file
readme_file = Path(__file__).parent / "README.md"
long_description = readme_file.read_text(encoding="utf-8") if readme_file.exists() else ""

# Read requirements, separating test-only dependencies
requirements_file = Path(__file__).parent / "requirements.txt"
requirements = []
dev_requirements = []

if requirements_file.exists():
    for line in requirements_file.read_text().strip().split("\n"):
        line = line.strip()
        # Skip empty lines and comments
        if not line or line.startswith("#"):
            continue

        if "pytest" in line:
            dev_requirements.append(line)
        else:
            requirements.append(line)

setup(
    name="pical",
    version="0.1.0",
    description="Recurrence expansion core for a household calendar kiosk",
    long_description=long_description,
    long_description_content_type="text/markdown",
    packages=find_packages(exclude=["tests*", "docs*"]),
    install_requires=requirements,
    extras_require={
        "test": dev_requirements,
        "dev": dev_requirements
        + [
            "ruff>=0.1.0",
            "mypy>=1.0.0",
        ],
    },
    python_requires=">=3.11",
    classifiers=[
        "Development Status :: 4 - Beta",
        "Intended Audience :: Developers",
        "License :: OSI Approved :: MIT License",
        "Operating System :: POSIX :: Linux",
        "Programming Language :: Python :: 3",
        "Programming Language :: Python :: 3.11",
        "Programming Language :: Python :: 3.12",
        "Topic :: Office/Business :: Scheduling",
    ],
    keywords="calendar rrule recurrence kiosk raspberry-pi",
    zip_safe=False,
    platforms=["linux", "macos"],
)
