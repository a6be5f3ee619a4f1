from chatgate.app import main

main()
