from swarmrun.main import main

main()
