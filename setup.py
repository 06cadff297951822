from setuptools import setup, find_packages

setup(
    name="einvex",
    version="1.0.0",
    description="Electronic invoice ingestion: archive extraction, dialect detection and atomic purchase import",
    packages=find_packages(include=['einvex', 'einvex.*']),
    package_data={'einvex.config': ['default_config.yaml']},
    include_package_data=True,
    python_requires='>=3.9',
    install_requires=[
        'pyyaml',
        'sqlalchemy>=2.0',
        'pydantic>=2.0',
        'lxml',
        'click',
    ],
    extras_require={
        'postgres': ['psycopg2-binary'],
        'test': ['pytest'],
    },
    entry_points={
        'console_scripts': [
            'einvex=einvex.cli:main',
        ],
    },
)
