from setuptools import setup, find_namespace_packages

setup(
    name="content-template-abtesting",
    version="1.0.0",
    packages=find_namespace_packages(include=["src", "src.*"]),
    python_requires=">=3.8",
    install_requires=[
        "pandas>=2.0.0",
        "numpy>=1.21.0",
        "scipy>=1.9.0",
        "Jinja2>=3.0.0",
        "streamlit>=1.20.0",
        "Flask>=2.0.0",
    ],
    extras_require={
        "test": ["pytest>=7.0.0"],
    },
)
