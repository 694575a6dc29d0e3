from holdspeak.app import main

main()
