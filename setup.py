from setuptools import setup, find_packages

setup(
    name="queue-monitor",
    version="0.1.0",
    description="Job queue monitor that records pushes, executions and workers and derives job status",
    author="Naufal Reky Ardhana",
    packages=find_packages(exclude=["tests", "tests.*"]),
    py_modules=["main"],
    install_requires=[
        "python-dotenv>=0.15.0",
        "sqlalchemy[asyncio]>=2.0.0",
        "redis>=5.0.1",
    ],
    extras_require={
        "mysql": ["aiomysql>=0.2.0"],
        "sqlite": ["aiosqlite>=0.17.0"],
        "test": ["aiosqlite>=0.17.0", "pytest>=7.0"],
    },
    python_requires=">=3.8",
    entry_points={
        'console_scripts': [
            'queue-monitor=main:main',
        ],
    },
    classifiers=[
        "Development Status :: 3 - Alpha",
        "Intended Audience :: Developers",
        "License :: OSI Approved :: MIT License",
        "Programming Language :: Python :: 3",
        "Programming Language :: Python :: 3.8",
        "Programming Language :: Python :: 3.9",
        "Programming Language :: Python :: 3.10",
        "Programming Language :: Python :: 3.11",
        "Programming Language :: Python :: 3.12",
    ],
)
