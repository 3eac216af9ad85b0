from sectiondocs.cli import main

main()
