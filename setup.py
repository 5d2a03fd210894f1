from setuptools import setup, find_packages

setup(
    name="prompt_apply",
    version="0.1.0",
    packages=find_packages(exclude=["tests", "tests.*"]),
    install_requires=[
        "pyyaml",
        "textual",
        "watchdog>=3.0",
        "tqdm>=4.60",
    ],
    extras_require={
        "test": [
            "pytest",
        ],
    },
    entry_points={
        "console_scripts": [
            "promptapply=prompt_apply.cli:main",
        ],
    },
    author="Uday Kanth",
    description="Parse file updates from LLM responses, preview diffs and apply them safely.",
)
