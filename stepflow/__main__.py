from stepflow.main import main

main()
