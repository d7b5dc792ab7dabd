"""
Setup script for SurvWrapper package.
"""

from setuptools import setup

setup(
    name="survwrapper",
    version="0.1.0",
    packages=["survwrapper", "survwrapper.model"],
    package_dir={"survwrapper": "survwrapper"},
    include_package_data=True,
    python_requires=">=3.9",
    install_requires=[
        "lifelines>=0.27.5",
        "numpy>=1.24.0",
        "pandas>=2.0.0",
        "scikit-learn>=1.3.0",
        "scikit-survival>=0.22.0",
        "matplotlib>=3.7.0",
        "seaborn>=0.12.0",
        "pyyaml>=6.0",
        "requests>=2.31.0",
        "joblib>=1.3.0",
    ],
    extras_require={
        "dev": [
            "pytest>=7.0.0",
            "pytest-cov>=4.0.0",
            "black>=23.0.0",
            "flake8>=6.0.0",
            "mypy>=1.0.0"
        ],
        "test": [
            "pytest>=7.0.0",
            "pytest-cov>=4.0.0",
        ]
    },
    entry_points={
        "console_scripts": [
            "survwrapper=survwrapper.main:main",
        ]
    },
    # Package data
    package_data={
        "survwrapper": ["*.yaml"],
    },
)
