"""
Setup file.
"""

import os

from setuptools import find_packages, setup

URL = "https://github.com/nbuild/nbuild"
KEYWORDS = "b2gos gecko adb deploy build prebuilts web-apps"
HERE = os.path.dirname(os.path.abspath(__file__))


if __name__ == "__main__":
    setup(
        name="nbuild",
        version="0.1.0",
        description="Build and deploy tool for b2gos",
        keywords=KEYWORDS,
        url=URL,
        python_requires=">=3.9",
        package_dir={"": "src"},
        packages=find_packages(where="src", include=["nbuild", "nbuild.*"]),
        install_requires=[
            "requests>=2.31.0",
            "tqdm>=4.66.0",
            "psutil>=5.9.0",
        ],
        extras_require={
            "test": [
                "pytest>=7.0",
            ],
        },
        entry_points={
            "console_scripts": [
                "nbuild=nbuild.cli:main",
            ],
        },
        include_package_data=True,
    )
