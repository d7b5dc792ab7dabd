from survwrapper.main import main

main()
