from diffscribe.cli import main

main()
