from setuptools import setup, find_packages

setup(
    name="alias-log-monitor",
    version="0.1.0",
    description="Multi-user log aggregation and live directory monitoring",
    author="Your Name",
    packages=find_packages(where="src"),
    package_dir={"": "src"},
    install_requires=[
        "click>=8.2.0",
        "pyyaml>=6.0",
        "pandas>=2.0.0",
        "rich>=13.0.0",
        "watchdog>=3.0.0",
    ],
    extras_require={
        "test": [
            "pytest>=7.0",
        ],
    },
    entry_points={
        "console_scripts": [
            "aliaslog=aliaslog.cli.main:main",
        ],
    },
    python_requires=">=3.9",
)
